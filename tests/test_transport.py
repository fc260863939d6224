import json
from datetime import datetime, timedelta, timezone

import pytest

from tinyagents.transport import PID, Conn, Envelope, EnvelopeKind, Transport


def test_full_envelope_round_trip():
    env = Envelope(
        kind=EnvelopeKind.MESSAGE,
        sender=PID(node="b", path="/test"),
        target=PID(node="a", path="/actor"),
        payload=b"hello",
        sent=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )
    assert Envelope.decode(env.encode()) == env


def test_default_envelope_round_trip():
    env = Envelope()
    decoded = Envelope.decode(env.encode())
    assert decoded == env
    assert decoded.sent is None
    assert decoded.payload == b""


def test_binary_payload_preserved():
    payload = bytes(range(256))
    env = Envelope(payload=payload)
    assert Envelope.decode(env.encode()).payload == payload


def test_heartbeat_kind_survives():
    env = Envelope(kind=EnvelopeKind.HEARTBEAT, sender=PID(node="a"))
    assert json.loads(env.encode())["kind"] == "heartbeat"
    decoded = Envelope.decode(env.encode())
    assert decoded.kind is EnvelopeKind.HEARTBEAT
    assert decoded.sender.node == "a"


def test_timezone_preserved():
    tz = timezone(timedelta(hours=2))
    env = Envelope(sent=datetime(2024, 6, 1, 12, 0, tzinfo=tz))
    assert Envelope.decode(env.encode()).sent.utcoffset() == timedelta(hours=2)


def test_encoding_is_deterministic():
    env = Envelope(sender=PID(node="x", path="/p"), payload=b"data")
    assert env.encode() == Envelope.decode(env.encode()).encode()


@pytest.mark.parametrize(
    "data",
    [
        b"not json",
        b"{}",
        b'{"kind":"nope","from":{"node":"","path":""},"to":{"node":"","path":""},'
        b'"payload":"","sent":null}',
        b'{"kind":"message","from":{"node":1,"path":""},"to":{"node":"","path":""},'
        b'"payload":"","sent":null}',
        b'{"kind":"message","from":{"node":"","path":""},"to":{"node":"","path":""},'
        b'"payload":"!!!","sent":null}',
    ],
)
def test_malformed_envelopes_rejected(data):
    with pytest.raises(ValueError):
        Envelope.decode(data)


def test_pid_str_joins_node_and_path():
    assert str(PID(node="n1", path="/user/a")) == "n1/user/a"


def test_abstract_classes_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Conn()
    with pytest.raises(TypeError):
        Transport()


@pytest.mark.asyncio
async def test_transport_context_manager_closes():
    class Recording(Transport):
        def __init__(self):
            self.closed = 0

        async def listen(self, addr, handler):
            pass

        def local_addr(self):
            return ""

        async def dial(self, node_id, addr):
            raise RuntimeError("no peers")

        async def close(self):
            self.closed += 1

    transport = Recording()
    entered = await Transport.__aenter__(transport)
    assert entered is transport
    assert transport.closed == 0
    await Transport.__aexit__(transport, None, None, None)
    assert transport.closed == 1