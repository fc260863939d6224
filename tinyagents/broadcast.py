"""A team that asks every member at once and joins the answers."""

from __future__ import annotations

import asyncio
import logging

from tinyagents.teamcore import (
    AgentError,
    Member,
    Message,
    Prompt,
    Response,
    Role,
    _chained,
    sum_usage,
)

__all__ = ["Broadcast"]

_log = logging.getLogger(__name__)

_SEPARATOR = "\n---\n"


class Broadcast:
    """Fans one prompt out to every member in parallel and joins the replies.

    The joined reply is an assistant message whose content is the member
    answers in member order, separated by ``"\\n---\\n"``; its usage is the
    sum of the reported usages, or None if no member reported any. The
    first member failure cancels the outstanding asks and is returned as an
    :class:`AgentError` naming the member index. Streaming is not supported.
    """

    def __init__(self, name: str, *members: Member) -> None:
        if not members:
            raise ValueError("team: Broadcast requires at least one member")
        self.name = name
        self._members = tuple(members)

    @property
    def members(self) -> tuple[Member, ...]:
        """The members in order."""
        return self._members

    async def ask(self, prompt: Prompt) -> Response | AgentError:
        """Ask every member and join their answers."""
        if not isinstance(prompt, Prompt):
            raise TypeError(f"team: Broadcast expects Prompt, got {type(prompt).__name__}")
        if prompt.stream is not None:
            prompt.stream.close()
            return self._fail(RuntimeError("team: Broadcast does not support streaming in v1"))

        member_prompt = Prompt(text=prompt.text, role=prompt.role)
        tasks = [
            asyncio.create_task(self._ask_member(i, member, member_prompt))
            for i, member in enumerate(self._members)
        ]
        responses: list[Response | None] = [None] * len(tasks)
        try:
            for finished in asyncio.as_completed(tasks):
                idx, reply, error = await finished
                if error is not None:
                    return self._fail(_chained(f"team: member {idx}", error))
                responses[idx] = reply
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        done = [r for r in responses if r is not None]
        usages = [r.usage for r in done]
        usage = sum_usage(usages) if any(u is not None for u in usages) else None
        content = _SEPARATOR.join(r.message.content for r in done)
        return Response(message=Message(Role.ASSISTANT, content), usage=usage)

    @staticmethod
    async def _ask_member(
        idx: int, member: Member, prompt: Prompt
    ) -> tuple[int, Response | None, BaseException | None]:
        try:
            reply = await member.ask(prompt)
        except Exception as exc:
            return idx, None, exc
        if isinstance(reply, Response):
            return idx, reply, None
        if isinstance(reply, AgentError):
            return idx, None, reply.error
        return idx, None, RuntimeError(
            f"unexpected reply type {type(reply).__name__} from member {idx}"
        )

    def _fail(self, error: BaseException) -> AgentError:
        _log.warning("team broadcast failed: %s", error)
        return AgentError(error)