"""A TCP transport with length-prefixed framing and heartbeats.

Each frame is a 4-byte big-endian length followed by an encoded
:class:`~tinyagents.transport.Envelope`. Connections are bidirectional:
once either side dials or accepts, both directions share the same socket.
Every connection opens with a handshake in which both ends send an
envelope naming their node, and keeps itself alive with heartbeat
envelopes; a peer that stays silent for ``heartbeat_miss`` intervals is
dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from datetime import datetime, timedelta, timezone

from tinyagents.transport import PID, Conn, Envelope, EnvelopeKind, Handler, Transport

__all__ = ["TransportClosedError", "HandshakeError", "TcpConn", "TcpTransport"]

_HEADER_SIZE = 4
MAX_FRAME_SIZE = 16 * 1024 * 1024
OUTBOUND_CAPACITY = 128


class TransportClosedError(ConnectionError):
    """Raised when using a transport or connection that has been closed."""


class HandshakeError(ConnectionError):
    """Raised when the opening identity exchange with a peer fails."""


def _seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _frame(data: bytes) -> bytes:
    if len(data) > MAX_FRAME_SIZE:
        raise ValueError(f"transport/tcp: frame of {len(data)} bytes exceeds limit")
    return len(data).to_bytes(_HEADER_SIZE, "big") + data


async def _read_frame(reader: asyncio.StreamReader) -> bytes:
    header = await reader.readexactly(_HEADER_SIZE)
    size = int.from_bytes(header, "big")
    if size > MAX_FRAME_SIZE:
        raise ValueError(f"transport/tcp: incoming frame of {size} bytes exceeds limit")
    return await reader.readexactly(size)


def _split_addr(addr: str) -> tuple[str | None, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"transport/tcp: address {addr!r} has no port")
    host = host.strip("[]")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ValueError(f"transport/tcp: bad port in address {addr!r}") from exc
    return (host or None), port_number


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TcpConn(Conn):
    """One end of a TCP connection to a peer node."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        node_id: str,
        *,
        local_node: str,
        heartbeat_interval: float,
        heartbeat_miss: int,
        logger: logging.Logger,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._node_id = node_id
        self._local_node = local_node
        self._hb_interval = heartbeat_interval
        self._hb_miss = heartbeat_miss
        self._log = logger
        self._outbound: asyncio.Queue[Envelope] = asyncio.Queue(maxsize=OUTBOUND_CAPACITY)
        self._done = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._last_seen = 0.0

    def __repr__(self) -> str:
        return f"TcpConn(node_id={self._node_id!r}, closed={self.closed})"

    @property
    def node_id(self) -> str:
        return self._node_id

    @property
    def closed(self) -> bool:
        """Whether the connection has terminated."""
        return self._done.is_set()

    def send(self, env: Envelope) -> None:
        """Queue ``env`` for writing.

        Raises :class:`TransportClosedError` once the connection is closed
        and BufferError when the outbound queue is full.
        """
        if self._done.is_set():
            raise TransportClosedError(f"transport/tcp: conn to {self._node_id} is closed")
        try:
            self._outbound.put_nowait(env)
        except asyncio.QueueFull:
            raise BufferError(
                f"transport/tcp: outbound buffer full for {self._node_id}"
            ) from None

    def close(self) -> None:
        if self._done.is_set():
            return
        self._done.set()
        current = _current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        self._writer.close()

    async def wait_closed(self) -> None:
        await self._done.wait()

    def _start(self, handler: Handler | None) -> list[asyncio.Task]:
        loop = asyncio.get_running_loop()
        self._last_seen = loop.time()
        self._tasks = [
            loop.create_task(self._read_loop(handler)),
            loop.create_task(self._write_loop()),
            loop.create_task(self._heartbeat_loop()),
        ]
        return list(self._tasks)

    async def _read_loop(self, handler: Handler | None) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                frame = await _read_frame(self._reader)
                self._last_seen = loop.time()
                try:
                    env = Envelope.decode(frame)
                except ValueError as exc:
                    self._log.warning(
                        "transport/tcp: unmarshal error peer=%s err=%s", self._node_id, exc
                    )
                    return
                if env.kind is EnvelopeKind.HEARTBEAT:
                    continue
                if handler is None:
                    continue
                try:
                    result = handler(self, env)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    self._log.exception("transport/tcp: handler failed peer=%s", self._node_id)
        except asyncio.IncompleteReadError:
            pass
        except (OSError, ValueError) as exc:
            if not self.closed:
                self._log.warning("transport/tcp: read error peer=%s err=%s", self._node_id, exc)
        finally:
            self.close()

    async def _write_loop(self) -> None:
        try:
            while True:
                env = await self._outbound.get()
                try:
                    data = _frame(env.encode())
                except (TypeError, ValueError) as exc:
                    self._log.warning(
                        "transport/tcp: marshal error peer=%s err=%s", self._node_id, exc
                    )
                    return
                self._writer.write(data)
                await self._writer.drain()
        except OSError as exc:
            if not self.closed:
                self._log.warning("transport/tcp: write error peer=%s err=%s", self._node_id, exc)
        finally:
            self.close()

    async def _heartbeat_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                await asyncio.sleep(self._hb_interval)
                if loop.time() - self._last_seen > self._hb_interval * self._hb_miss:
                    self._log.warning("transport/tcp: heartbeat timeout peer=%s", self._node_id)
                    return
                beat = Envelope(
                    kind=EnvelopeKind.HEARTBEAT,
                    sender=PID(node=self._local_node),
                    sent=datetime.now(timezone.utc),
                )
                try:
                    self.send(beat)
                except (TransportClosedError, BufferError) as exc:
                    self._log.debug("transport/tcp: heartbeat not sent: %s", exc)
        finally:
            self.close()


class TcpTransport(Transport):
    """TCP implementation of :class:`~tinyagents.transport.Transport`.

    Durations may be given in seconds or as timedelta values.
    """

    def __init__(
        self,
        node_id: str,
        *,
        heartbeat_interval: float | timedelta = 5.0,
        heartbeat_miss: int = 3,
        dial_timeout: float | timedelta = 5.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.node_id = node_id
        self._hb_interval = _seconds(heartbeat_interval)
        self._hb_miss = heartbeat_miss
        self._dial_timeout = _seconds(dial_timeout)
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._handler: Handler | None = None
        self._server: asyncio.base_events.Server | None = None
        self._conns: dict[str, TcpConn] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def __repr__(self) -> str:
        return f"TcpTransport(node_id={self.node_id!r}, peers={sorted(self._conns)!r})"

    async def listen(self, addr: str, handler: Handler) -> None:
        """Bind ``addr`` and dispatch inbound envelopes to ``handler``."""
        if self._closed:
            raise TransportClosedError("transport/tcp: transport is closed")
        host, port = _split_addr(addr)
        try:
            server = await asyncio.start_server(self._accept, host, port)
        except OSError as exc:
            raise OSError(f"transport/tcp: listen {addr}: {exc}") from exc
        self._server = server
        self._handler = handler

    def local_addr(self) -> str:
        if self._server is None or not self._server.sockets:
            return ""
        host, port = self._server.sockets[0].getsockname()[:2]
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"

    async def dial(self, node_id: str, addr: str) -> TcpConn:
        """Open, or reuse, the connection to ``node_id`` at ``addr``."""
        if self._closed:
            raise TransportClosedError("transport/tcp: transport is closed")
        existing = self._conns.get(node_id)
        if existing is not None:
            return existing

        host, port = _split_addr(addr)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), self._dial_timeout
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise ConnectionError(f"transport/tcp: dial {addr}: {exc}") from exc

        try:
            conn = await self._handshake(reader, writer, node_id)
        except BaseException:
            writer.close()
            raise

        existing = self._conns.get(node_id)
        if existing is not None:
            conn.close()
            return existing
        if self._closed:
            conn.close()
            raise TransportClosedError("transport/tcp: transport closed during dial")
        self._conns[node_id] = conn
        self._start_conn(conn)
        return conn

    async def close(self) -> None:
        """Close the listener and every connection, and wait for their tasks."""
        if self._closed:
            return
        self._closed = True
        server = self._server
        if server is not None:
            server.close()
        conns = list(self._conns.values())
        for conn in conns:
            conn.close()
        current = _current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            if not task.done() and task not in self._reapers:
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if server is not None:
            with contextlib.suppress(asyncio.TimeoutError, OSError):
                await asyncio.wait_for(server.wait_closed(), 1.0)

    @property
    def _reapers(self) -> set[asyncio.Task]:
        return {task for task in self._tasks if task.get_name().startswith("tcp-reaper")}

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._track(task)
        if self._closed:
            writer.close()
            return
        try:
            conn = await self._handshake(reader, writer, "")
        except HandshakeError as exc:
            self._log.warning(
                "transport/tcp: accept handshake failed remote=%s err=%s",
                writer.get_extra_info("peername"),
                exc,
            )
            writer.close()
            return
        except asyncio.CancelledError:
            writer.close()
            raise

        if self._closed or conn.node_id in self._conns:
            # Keep an existing connection to the same peer.
            conn.close()
            return
        self._conns[conn.node_id] = conn
        self._start_conn(conn)

    async def _handshake(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        expected_node_id: str,
    ) -> TcpConn:
        hello = Envelope(
            kind=EnvelopeKind.MESSAGE,
            sender=PID(node=self.node_id),
            sent=datetime.now(timezone.utc),
        )
        try:
            writer.write(_frame(hello.encode()))
            await writer.drain()
        except OSError as exc:
            raise HandshakeError(f"transport/tcp: write handshake: {exc}") from exc
        try:
            frame = await _read_frame(reader)
        except (asyncio.IncompleteReadError, OSError, ValueError) as exc:
            raise HandshakeError(f"transport/tcp: read handshake: {exc}") from exc
        try:
            peer = Envelope.decode(frame)
        except ValueError as exc:
            raise HandshakeError(f"transport/tcp: unmarshal handshake: {exc}") from exc

        peer_node_id = peer.sender.node
        if not peer_node_id:
            raise HandshakeError("transport/tcp: peer sent empty node id in handshake")
        if expected_node_id and peer_node_id != expected_node_id:
            raise HandshakeError(
                "transport/tcp: handshake node id mismatch: "
                f"want {expected_node_id!r}, got {peer_node_id!r}"
            )
        return TcpConn(
            reader,
            writer,
            peer_node_id,
            local_node=self.node_id,
            heartbeat_interval=self._hb_interval,
            heartbeat_miss=self._hb_miss,
            logger=self._log,
        )

    def _start_conn(self, conn: TcpConn) -> None:
        for task in conn._start(self._handler):
            self._track(task)
        reaper = asyncio.get_running_loop().create_task(
            self._reap(conn), name=f"tcp-reaper-{conn.node_id}"
        )
        self._track(reaper)

    async def _reap(self, conn: TcpConn) -> None:
        await conn.wait_closed()
        if self._conns.get(conn.node_id) is conn:
            del self._conns[conn.node_id]