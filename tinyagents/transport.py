"""The byte pipe used for delivering envelopes between nodes.

Code that talks to other nodes works against :class:`Transport` and
:class:`Conn` regardless of what carries the bytes.
"""

from __future__ import annotations

import base64
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

__all__ = ["EnvelopeKind", "PID", "Envelope", "Conn", "Transport", "Handler"]


class EnvelopeKind(str, Enum):
    """What an envelope carries."""

    MESSAGE = "message"
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class PID:
    """Address of an actor: the node it lives on and its path there."""

    node: str = ""
    path: str = ""

    def __str__(self) -> str:
        return f"{self.node}{self.path}"


@dataclass(frozen=True)
class Envelope:
    """One unit of cross-node delivery."""

    kind: EnvelopeKind = EnvelopeKind.MESSAGE
    sender: PID = field(default_factory=PID)
    target: PID = field(default_factory=PID)
    payload: bytes = b""
    sent: datetime | None = None

    def encode(self) -> bytes:
        """Serialise to compact JSON bytes; the payload is base64-encoded."""
        doc = {
            "kind": self.kind.value,
            "from": {"node": self.sender.node, "path": self.sender.path},
            "to": {"node": self.target.node, "path": self.target.path},
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "sent": self.sent.isoformat() if self.sent is not None else None,
        }
        return json.dumps(doc, separators=(",", ":"), sort_keys=True).encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> Envelope:
        """Parse bytes produced by :meth:`encode`; raises ValueError if malformed."""
        try:
            doc = json.loads(data)
            sent = doc["sent"]
            return cls(
                kind=EnvelopeKind(doc["kind"]),
                sender=_pid(doc["from"]),
                target=_pid(doc["to"]),
                payload=base64.b64decode(doc["payload"], validate=True),
                sent=datetime.fromisoformat(sent) if sent is not None else None,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"transport: malformed envelope: {exc}") from exc


def _pid(doc: Any) -> PID:
    node, path = doc["node"], doc["path"]
    if not isinstance(node, str) or not isinstance(path, str):
        raise TypeError("pid fields must be strings")
    return PID(node=node, path=path)


class Conn(ABC):
    """One end of a connection to a peer node."""

    @property
    @abstractmethod
    def node_id(self) -> str:
        """The peer's node id, stable for the connection's lifetime."""

    @abstractmethod
    def send(self, env: Envelope) -> None:
        """Queue ``env`` for writing; does not wait for the peer."""

    @abstractmethod
    def close(self) -> None:
        """Drop the connection. Safe to call more than once."""

    @abstractmethod
    async def wait_closed(self) -> None:
        """Return once the connection has terminated for any reason."""


Handler = Callable[[Conn, Envelope], "Awaitable[None] | None"]


class Transport(ABC):
    """A node's endpoint for connections to its peers."""

    @abstractmethod
    async def listen(self, addr: str, handler: Handler) -> None:
        """Bind ``host:port`` (port 0 picks one) and deliver inbound envelopes to ``handler``."""

    @abstractmethod
    def local_addr(self) -> str:
        """The bound ``host:port``, or an empty string before :meth:`listen`."""

    @abstractmethod
    async def dial(self, node_id: str, addr: str) -> Conn:
        """Open, or reuse, the connection to ``node_id``; the first dial wins."""

    @abstractmethod
    async def close(self) -> None:
        """Close the listener and every connection."""

    async def __aenter__(self) -> Transport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()