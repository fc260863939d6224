"""A team in which workers answer in parallel and a lead synthesises."""

from __future__ import annotations

import asyncio
import logging

from tinyagents.teamcore import (
    AgentError,
    Member,
    Prompt,
    Response,
    Role,
    Usage,
    _chained,
    sum_usage,
)

__all__ = ["Hierarchy"]

_log = logging.getLogger(__name__)

_SYNTHESIS_INSTRUCTION = (
    "\nSynthesize a single coherent answer combining the workers' perspectives."
)


class Hierarchy:
    """Fans a prompt out to every worker, then asks the lead to synthesise.

    Workers run without a stream; the caller's stream goes to the lead
    only. If any worker fails the lead is not asked, the stream is closed
    and an :class:`AgentError` naming the worker index is returned. The
    final usage is the sum of every worker's usage plus the lead's.
    """

    def __init__(self, name: str, lead: Member, *workers: Member) -> None:
        if lead is None:
            raise ValueError("team: Hierarchy lead must not be None")
        if not workers:
            raise ValueError("team: Hierarchy requires at least one worker")
        self.name = name
        self._lead = lead
        self._workers = tuple(workers)

    @property
    def lead(self) -> Member:
        """The member that synthesises the workers' answers."""
        return self._lead

    @property
    def workers(self) -> tuple[Member, ...]:
        """The workers in order."""
        return self._workers

    async def ask(self, prompt: Prompt) -> Response | AgentError:
        """Ask every worker, then the lead, and return the lead's answer."""
        if not isinstance(prompt, Prompt):
            raise TypeError(f"team: Hierarchy expects Prompt, got {type(prompt).__name__}")
        stream = prompt.stream
        handed_off = False
        try:
            responses, failures = await self._ask_workers(prompt.text)
            if failures:
                error = failures[0]
                _log.warning("team hierarchy worker failed: %s", error)
                return AgentError(_chained("team: hierarchy worker error", error))

            parts = [f"Original question: {prompt.text}\n"]
            parts.extend(
                f"\nWorker {i} said:\n{response.message.content}\n"
                for i, response in enumerate(responses)
            )
            parts.append(_SYNTHESIS_INSTRUCTION)
            total = sum_usage(response.usage for response in responses)

            lead_prompt = Prompt(text="".join(parts), role=Role.USER, stream=stream)
            handed_off = stream is not None
            try:
                reply = await self._lead.ask(lead_prompt)
            except Exception as exc:
                handed_off = False
                _log.warning("team hierarchy lead ask failed: %s", exc)
                return AgentError(_chained("team: hierarchy lead ask", exc))

            if isinstance(reply, Response):
                if reply.usage is not None:
                    total = total + reply.usage
                return Response(
                    message=reply.message, usage=total if total != Usage() else None
                )
            handed_off = False
            if isinstance(reply, AgentError):
                _log.warning("team hierarchy lead returned error: %s", reply.error)
                return AgentError(_chained("team: hierarchy lead", reply.error))
            return AgentError(
                RuntimeError(f"team: hierarchy lead unexpected reply {type(reply).__name__}")
            )
        finally:
            if stream is not None and not handed_off:
                stream.close()

    async def _ask_workers(self, text: str) -> tuple[list[Response], list[BaseException]]:
        """Ask all workers; failures are listed in the order they finished."""
        failures: list[BaseException] = []

        async def ask_one(idx: int, worker: Member) -> Response | None:
            try:
                reply = await worker.ask(Prompt(text=text))
            except Exception as exc:
                failures.append(_chained(f"worker {idx}: ask failed", exc))
                return None
            if isinstance(reply, Response):
                return reply
            if isinstance(reply, AgentError):
                failures.append(_chained(f"worker {idx}", reply.error))
            else:
                failures.append(
                    RuntimeError(f"worker {idx}: unexpected reply {type(reply).__name__}")
                )
            return None

        results = await asyncio.gather(
            *(ask_one(i, worker) for i, worker in enumerate(self._workers))
        )
        return [r for r in results if r is not None], failures