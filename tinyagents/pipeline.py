"""A team that chains members, feeding each answer to the next."""

from __future__ import annotations

import logging

from tinyagents.teamcore import (
    AgentError,
    Member,
    Message,
    Prompt,
    Response,
    Usage,
    _chained,
)

__all__ = ["Pipeline"]

_log = logging.getLogger(__name__)


class Pipeline:
    """Feeds each stage's answer into the next stage as a fresh prompt.

    When the caller's prompt carries a stream only the final stage gets
    it, so the caller sees the user-visible answer without intermediate
    reasoning. If the pipeline stops before the final stage the stream is
    closed here.
    """

    def __init__(self, name: str, *stages: Member) -> None:
        if not stages:
            raise ValueError("team: Pipeline requires at least one stage")
        self.name = name
        self._stages = tuple(stages)

    @property
    def stages(self) -> tuple[Member, ...]:
        """The stages in order."""
        return self._stages

    async def ask(self, prompt: Prompt) -> Response | AgentError:
        """Run ``prompt`` through every stage in order."""
        if not isinstance(prompt, Prompt):
            raise TypeError(f"team: Pipeline expects Prompt, got {type(prompt).__name__}")
        stream = prompt.stream
        handed_off = False
        try:
            total = Usage()
            text = prompt.text
            last: Message | None = None
            final = len(self._stages) - 1
            for i, stage in enumerate(self._stages):
                if i == final:
                    stage_prompt = Prompt(text=text, stream=stream)
                    handed_off = stream is not None
                else:
                    stage_prompt = Prompt(text=text)
                try:
                    reply = await stage.ask(stage_prompt)
                except Exception as exc:
                    return self._fail(_chained(f"team: stage {i} ask", exc))
                if isinstance(reply, Response):
                    last = reply.message
                    text = reply.message.content
                    if reply.usage is not None:
                        total = total + reply.usage
                elif isinstance(reply, AgentError):
                    return self._fail(_chained(f"team: stage {i}", reply.error))
                else:
                    return self._fail(
                        RuntimeError(f"team: stage {i} unexpected reply {type(reply).__name__}")
                    )
            if last is None or last.role is None:
                return self._fail(RuntimeError("team: pipeline produced empty response"))
            return Response(message=last, usage=total if total != Usage() else None)
        finally:
            if stream is not None and not handed_off:
                stream.close()

    def _fail(self, error: BaseException) -> AgentError:
        _log.warning("team pipeline failed: %s", error)
        return AgentError(error)