import asyncio

import pytest

from tinyagents.key_router import KeyRouter, route_index
from tinyagents.teamcore import (
    AgentError,
    Chunk,
    ChunkStream,
    Message,
    Prompt,
    Response,
    Role,
    Usage,
)


class Transformer:
    def __init__(self, ident, fn, usage=None):
        self.id = ident
        self.fn = fn
        self.usage = usage
        self.calls = 0

    async def ask(self, prompt):
        self.calls += 1
        try:
            if prompt.stream is not None:
                prompt.stream.put(Chunk(delta=f"stream-from-{self.id}"))
            try:
                out = self.fn(prompt.text)
            except Exception as exc:
                return AgentError(exc)
            return Response(Message(Role.ASSISTANT, out), self.usage)
        finally:
            if prompt.stream is not None:
                prompt.stream.close()


def text_key(prompt):
    return prompt.text


def find_keys_for_indices(n):
    keys = {}
    i = 0
    while len(keys) < n:
        key = f"route-key-{i}"
        keys.setdefault(route_index(key, n), key)
        i += 1
    return [keys[idx] for idx in range(n)]


def test_route_index_empty_key_is_zero():
    for n in (1, 2, 7):
        assert route_index("", n) == 0


def test_route_index_in_range_and_stable():
    for i in range(50):
        key = f"k-{i}"
        idx = route_index(key, 5)
        assert 0 <= idx < 5
        assert route_index(key, 5) == idx


@pytest.mark.asyncio
async def test_router_dispatches_by_key():
    members = [Transformer(f"m{i}", lambda s, i=i: f"{s}-from-{i}") for i in range(3)]
    router = KeyRouter("r", text_key, *members)
    for key in find_keys_for_indices(3):
        reply = await asyncio.wait_for(router.ask(Prompt(text=key)), 1)
        assert isinstance(reply, Response)
    assert [m.calls for m in members] == [1, 1, 1]


@pytest.mark.asyncio
async def test_router_stable_mapping():
    members = [Transformer(f"sm{i}", lambda s: s) for i in range(5)]
    router = KeyRouter("r-stable", text_key, *members)
    key = "always-same"
    expected = route_index(key, 5)
    for _ in range(5):
        await router.ask(Prompt(text=key))
    for i, m in enumerate(members):
        assert m.calls == (5 if i == expected else 0)


@pytest.mark.asyncio
async def test_router_relays_response():
    want = Usage(prompt_tokens=7, completion_tokens=3, total_tokens=10)
    m = Transformer("relay-m", lambda s: "echo:" + s, want)
    reply = await KeyRouter("r-relay", text_key, m).ask(Prompt(text="hello"))
    assert isinstance(reply, Response)
    assert reply.message.content == "echo:hello"
    assert reply.usage == want


@pytest.mark.asyncio
async def test_router_propagates_error():
    def explode(_text):
        raise RuntimeError("member-exploded")

    m = Transformer("err-m", explode)
    reply = await KeyRouter("r-err", text_key, m).ask(Prompt(text="boom"))
    assert isinstance(reply, AgentError)
    assert "member 0" in str(reply.error)
    assert "member-exploded" in str(reply.error)


@pytest.mark.asyncio
async def test_router_empty_key_routes_to_member_zero():
    members = [Transformer(f"ez{i}", lambda s: s) for i in range(2)]
    router = KeyRouter("r-empty", lambda _p: "", *members)
    for _ in range(3):
        await router.ask(Prompt(text="whatever"))
    assert members[0].calls == 3
    assert members[1].calls == 0


@pytest.mark.asyncio
async def test_router_forwards_stream_to_member():
    m = Transformer("only", lambda s: s)
    stream = ChunkStream()
    reply = await KeyRouter("r-stream", text_key, m).ask(Prompt(text="x", stream=stream))
    assert isinstance(reply, Response)
    assert [c.delta async for c in stream] == ["stream-from-only"]


@pytest.mark.asyncio
async def test_router_closes_stream_on_ask_error():
    class Dead:
        async def ask(self, prompt):
            raise ConnectionError("mailbox closed")

    stream = ChunkStream()
    reply = await KeyRouter("r-stream-close", text_key, Dead()).ask(Prompt(text="test", stream=stream))
    assert isinstance(reply, AgentError)
    assert "member 0 ask" in str(reply.error)
    assert stream.closed
    chunks = await asyncio.wait_for(_collect(stream), 0.5)
    assert chunks == []


def test_router_none_key_fn_raises():
    with pytest.raises(ValueError):
        KeyRouter("r", None, Transformer("m", lambda s: s))


def test_router_empty_members_raises():
    with pytest.raises(ValueError):
        KeyRouter("r", text_key)


async def _collect(stream):
    return [c async for c in stream]