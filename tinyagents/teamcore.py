"""Shared message types for agent teams.

Teams compose agents into coordinators that expose the same interface as
a single agent: ``await member.ask(Prompt(...))`` returns either a
:class:`Response` or an :class:`AgentError`. Coordinators accept any
:class:`Member`, so teams nest inside other teams. A member that cannot
be reached at all raises instead of replying.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Iterable, Protocol, runtime_checkable

__all__ = [
    "Role",
    "Usage",
    "Message",
    "Chunk",
    "ChunkStream",
    "Prompt",
    "Response",
    "AgentError",
    "Member",
    "sum_usage",
]


class Role(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Usage:
    """Token accounting reported by a model call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
            self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class Message:
    """One chat message; ``role`` is None when nothing was produced."""

    role: Role | None = None
    content: str = ""


@dataclass(frozen=True)
class Chunk:
    """A piece of a streamed answer."""

    delta: str = ""
    usage: Usage | None = None


_CLOSED = object()


class ChunkStream:
    """An unbounded stream of chunks that one side fills and closes.

    Iterating with ``async for`` yields chunks until the stream is closed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    def put(self, chunk: Chunk) -> None:
        """Append ``chunk``; raises RuntimeError once the stream is closed."""
        if self._closed:
            raise RuntimeError("put on a closed chunk stream")
        self._queue.put_nowait(chunk)

    def close(self) -> None:
        """Mark the end of the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[Chunk]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                # Leave the marker for any later iteration.
                self._queue.put_nowait(_CLOSED)
                return
            yield item  # type: ignore[misc]


@dataclass(frozen=True)
class Prompt:
    """A request to an agent; ``stream`` receives chunks if given."""

    text: str
    role: Role | None = None
    stream: ChunkStream | None = None


@dataclass(frozen=True)
class Response:
    """A successful agent reply."""

    message: Message
    usage: Usage | None = None


@dataclass(frozen=True)
class AgentError:
    """A failed agent reply carrying the underlying exception."""

    error: BaseException

    def __str__(self) -> str:
        return str(self.error)


@runtime_checkable
class Member(Protocol):
    """Anything that answers prompts like an agent."""

    async def ask(self, prompt: Prompt) -> Response | AgentError:
        """Answer ``prompt``; raise if the member cannot be reached."""
        ...


def sum_usage(usages: Iterable[Usage | None]) -> Usage:
    """Add up every reported usage, skipping missing ones."""
    total = Usage()
    for usage in usages:
        if usage is not None:
            total = total + usage
    return total


def _chained(message: str, cause: BaseException) -> RuntimeError:
    """An error reading ``message: cause`` whose ``__cause__`` is ``cause``."""
    error = RuntimeError(f"{message}: {cause}")
    error.__cause__ = cause
    return error