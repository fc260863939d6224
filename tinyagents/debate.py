"""A team in which debaters take turns and an arbiter gives a verdict."""

from __future__ import annotations

import logging

from tinyagents.teamcore import (
    AgentError,
    Member,
    Prompt,
    Response,
    Role,
    Usage,
    _chained,
)

__all__ = ["Debate"]

_log = logging.getLogger(__name__)

_ARBITER_INSTRUCTION = "\n\nAs the arbiter, analyze the debate and declare a verdict."


class Debate:
    """Runs rounds of round-robin turns, then asks the arbiter for a verdict.

    The transcript reads ``Topic: <topic>`` followed by one paragraph per
    turn, ``Debater <i> (turn <n>): <reply>``. Each debater sees the
    transcript so far, ending with its own label. Only the arbiter gets the
    caller's stream; debaters always run without one.
    """

    def __init__(self, name: str, rounds: int, arbiter: Member, *debaters: Member) -> None:
        if arbiter is None:
            raise ValueError("team: Debate arbiter must not be None")
        if len(debaters) < 2:
            raise ValueError("team: Debate requires at least 2 debaters")
        if rounds < 1:
            raise ValueError("team: Debate rounds must be >= 1")
        self.name = name
        self.rounds = rounds
        self._arbiter = arbiter
        self._debaters = tuple(debaters)

    @property
    def arbiter(self) -> Member:
        """The member that declares the verdict."""
        return self._arbiter

    @property
    def debaters(self) -> tuple[Member, ...]:
        """The debaters in turn order."""
        return self._debaters

    async def ask(self, prompt: Prompt) -> Response | AgentError:
        """Hold the debate on ``prompt.text`` and return the arbiter's verdict."""
        if not isinstance(prompt, Prompt):
            raise TypeError(f"team: Debate expects Prompt, got {type(prompt).__name__}")
        stream = prompt.stream
        handed_off = False
        try:
            transcript = [f"Topic: {prompt.text}"]
            total = Usage()

            for turn in range(1, self.rounds + 1):
                for i, debater in enumerate(self._debaters):
                    transcript.append(f"\n\nDebater {i} (turn {turn}): ")
                    role = f"debater {i} turn {turn}"
                    try:
                        reply = await debater.ask(
                            Prompt(text="".join(transcript), role=Role.USER)
                        )
                    except Exception as exc:
                        _log.warning("team debate debater failed (%s): %s", role, exc)
                        return self._fail(_chained(f"team: {role} ask", exc))
                    if isinstance(reply, Response):
                        transcript.append(reply.message.content)
                        if reply.usage is not None:
                            total = total + reply.usage
                    elif isinstance(reply, AgentError):
                        _log.warning("team debate debater error (%s): %s", role, reply.error)
                        return self._fail(_chained(f"team: {role}", reply.error))
                    else:
                        return self._fail(
                            RuntimeError(
                                f"team: {role} unexpected reply {type(reply).__name__}"
                            )
                        )

            arbiter_prompt = Prompt(
                text="".join(transcript) + _ARBITER_INSTRUCTION,
                role=Role.USER,
                stream=stream,
            )
            handed_off = stream is not None
            try:
                reply = await self._arbiter.ask(arbiter_prompt)
            except Exception as exc:
                _log.warning("team debate arbiter failed: %s", exc)
                return self._fail(_chained("team: arbiter ask", exc))
            if isinstance(reply, Response):
                if reply.usage is not None:
                    total = total + reply.usage
                return Response(
                    message=reply.message, usage=total if total != Usage() else None
                )
            if isinstance(reply, AgentError):
                _log.warning("team debate arbiter error: %s", reply.error)
                return self._fail(_chained("team: arbiter", reply.error))
            return self._fail(
                RuntimeError(f"team: arbiter unexpected reply {type(reply).__name__}")
            )
        finally:
            if stream is not None and not handed_off:
                stream.close()

    def _fail(self, error: BaseException) -> AgentError:
        _log.warning("team debate failed: %s", error)
        return AgentError(error)