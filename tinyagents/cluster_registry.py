"""Registry views over a running actor system and a cluster.

:class:`ClusterRegistry` keeps a consistent-hash ring over the current
cluster membership and answers which node owns an actor path in
O(log N), rebuilding the ring on every membership event.
"""

from __future__ import annotations

import bisect
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Protocol, runtime_checkable

__all__ = [
    "Registry",
    "Member",
    "EventKind",
    "Event",
    "Cluster",
    "ClusterRegistry",
    "fnv64a",
]

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_MASK64 = (1 << 64) - 1

DEFAULT_REPLICAS = 128


def fnv64a(data: bytes | str) -> int:
    """FNV-1a 64-bit hash of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    h = _FNV64_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV64_PRIME) & _MASK64
    return h


@runtime_checkable
class Registry(Protocol):
    """Minimum contract of a registry of actor references."""

    def lookup(self, path: str) -> Any | None:
        """Return the reference at ``path``, or None if there is none."""
        ...

    def list(self) -> list[Any]:
        """Return every known reference; order is unspecified."""
        ...


@dataclass(frozen=True)
class Member:
    """A node in the cluster."""

    id: str


class EventKind(Enum):
    """Kinds of cluster membership events."""

    MEMBER_JOINED = auto()
    MEMBER_LEFT = auto()
    MEMBER_UPDATED = auto()


@dataclass(frozen=True)
class Event:
    """A membership change."""

    kind: EventKind
    member: Member


EventHandler = Callable[[Event], None]


@runtime_checkable
class Cluster(Protocol):
    """The part of a cluster the registry relies on."""

    def members(self) -> list[Member]:
        """Current membership snapshot."""
        ...

    def local_node(self) -> Member:
        """The member this process runs as."""
        ...

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for events and return an unsubscribe function."""
        ...


_REBUILD_KINDS = frozenset(
    {EventKind.MEMBER_JOINED, EventKind.MEMBER_LEFT, EventKind.MEMBER_UPDATED}
)


def _build_ring(members: list[Member], replicas: int) -> tuple[list[int], list[str]]:
    entries = sorted(
        (fnv64a(f"{member.id}#{i}"), member.id)
        for member in members
        for i in range(replicas)
    )
    return [h for h, _ in entries], [node for _, node in entries]


class ClusterRegistry:
    """Maps actor paths to owning nodes by consistent hashing.

    The local registry is kept as the in-process cache; ``replicas`` is the
    number of virtual nodes per member (values <= 0 fall back to 128).
    """

    def __init__(self, local: Registry, cluster: Cluster, replicas: int = DEFAULT_REPLICAS) -> None:
        if replicas <= 0:
            replicas = DEFAULT_REPLICAS
        self._local = local
        self._cluster = cluster
        self._replicas = replicas
        self._lock = threading.Lock()
        self._ring = _build_ring(cluster.members(), replicas)
        self._closed = False
        self._unsubscribe = cluster.subscribe(self._on_event)

    @property
    def local(self) -> Registry:
        """The in-process registry passed at construction."""
        return self._local

    @property
    def replicas(self) -> int:
        """Virtual nodes per member on the ring."""
        return self._replicas

    def _on_event(self, event: Event) -> None:
        if event.kind in _REBUILD_KINDS:
            ring = _build_ring(self._cluster.members(), self._replicas)
            with self._lock:
                self._ring = ring

    def owner_of(self, path: str) -> str:
        """Return the id of the node responsible for ``path``.

        With no members on the ring the local node's id is returned.
        """
        with self._lock:
            hashes, nodes = self._ring
        if not hashes:
            return self._cluster.local_node().id
        i = bisect.bisect_left(hashes, fnv64a(path))
        if i >= len(hashes):
            i = 0
        return nodes[i]

    def is_local(self, path: str) -> bool:
        """Whether the local node currently owns ``path``."""
        return self.owner_of(path) == self._cluster.local_node().id

    def close(self) -> None:
        """Stop following cluster events. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._unsubscribe()

    def __enter__(self) -> ClusterRegistry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()