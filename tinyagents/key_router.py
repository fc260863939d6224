"""A team that sends each prompt to one member chosen by a key."""

from __future__ import annotations

import logging
from typing import Callable

from tinyagents.cluster_registry import fnv64a
from tinyagents.teamcore import AgentError, Member, Prompt, Response, _chained

__all__ = ["KeyRouter", "route_index"]

_log = logging.getLogger(__name__)

KeyFunc = Callable[[Prompt], str]


def route_index(key: str, n: int) -> int:
    """Stable member index for ``key``: FNV-64a(key) mod n, 0 for an empty key."""
    if not key:
        return 0
    return fnv64a(key) % n


class KeyRouter:
    """Dispatches each prompt to exactly one member by stable key hashing.

    The mapping is stable within a process but changes when the number of
    members changes. The chosen member receives the caller's stream; if
    asking it fails the stream is closed here.
    """

    def __init__(self, name: str, key_fn: KeyFunc, *members: Member) -> None:
        if key_fn is None or not callable(key_fn):
            raise ValueError("team: KeyRouter key_fn must be callable")
        if not members:
            raise ValueError("team: KeyRouter requires at least one member")
        self.name = name
        self._key_fn = key_fn
        self._members = tuple(members)

    @property
    def members(self) -> tuple[Member, ...]:
        """The members in order."""
        return self._members

    async def ask(self, prompt: Prompt) -> Response | AgentError:
        """Forward ``prompt`` to the member its key selects."""
        if not isinstance(prompt, Prompt):
            raise TypeError(f"team: KeyRouter expects Prompt, got {type(prompt).__name__}")
        idx = route_index(self._key_fn(prompt), len(self._members))
        chosen = self._members[idx]
        forwarded = Prompt(text=prompt.text, role=prompt.role, stream=prompt.stream)
        try:
            reply = await chosen.ask(forwarded)
        except Exception as exc:
            if prompt.stream is not None:
                prompt.stream.close()
            return self._fail(_chained(f"team: router member {idx} ask", exc))
        if isinstance(reply, Response):
            return reply
        if isinstance(reply, AgentError):
            return AgentError(_chained(f"team: router member {idx}", reply.error))
        return self._fail(
            RuntimeError(f"team: router member {idx} unexpected reply {type(reply).__name__}")
        )

    def _fail(self, error: BaseException) -> AgentError:
        _log.warning("team router failed: %s", error)
        return AgentError(error)