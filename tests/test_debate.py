import pytest

from tinyagents.debate import Debate
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
    """Test member applying ``fn`` to the prompt text."""

    def __init__(self, ident, fn, usage=None):
        self.ident = ident
        self.fn = fn
        self.usage = usage
        self.calls = 0
        self.inputs = []

    async def ask(self, prompt):
        self.calls += 1
        self.inputs.append(prompt.text)
        if prompt.stream is not None:
            prompt.stream.put(Chunk(delta="stream-from-" + self.ident))
        try:
            try:
                out = self.fn(prompt.text)
            except Exception as exc:
                return AgentError(exc)
            return Response(Message(Role.ASSISTANT, out), self.usage)
        finally:
            if prompt.stream is not None:
                prompt.stream.close()


def const(value):
    return lambda _text: value


def fail(message):
    def fn(_text):
        raise RuntimeError(message)

    return fn


@pytest.mark.asyncio
async def test_runs_rounds_and_asks_arbiter():
    d0 = Transformer("d0", const("reply-d0"))
    d1 = Transformer("d1", const("reply-d1"))
    arb = Transformer("arb", const("verdict"))

    reply = await Debate("debate1", 2, arb, d0, d1).ask(Prompt(text="topic"))

    assert isinstance(reply, Response)
    assert d0.calls == 2
    assert d1.calls == 2
    assert arb.calls == 1
    transcript = arb.inputs[0]
    for label in (
        "Debater 0 (turn 1): ",
        "Debater 1 (turn 1): ",
        "Debater 0 (turn 2): ",
        "Debater 1 (turn 2): ",
        "As the arbiter, analyze the debate and declare a verdict.",
    ):
        assert label in transcript


@pytest.mark.asyncio
async def test_transcript_layout():
    d0 = Transformer("d0", const("x"))
    d1 = Transformer("d1", const("y"))
    arb = Transformer("arb", const("v"))

    await Debate("d", 1, arb, d0, d1).ask(Prompt(text="t"))

    assert d0.inputs == ["Topic: t\n\nDebater 0 (turn 1): "]
    assert d1.inputs == ["Topic: t\n\nDebater 0 (turn 1): x\n\nDebater 1 (turn 1): "]
    assert arb.inputs == [
        "Topic: t\n\nDebater 0 (turn 1): x\n\nDebater 1 (turn 1): y"
        "\n\nAs the arbiter, analyze the debate and declare a verdict."
    ]


@pytest.mark.asyncio
async def test_final_response_is_arbiter_verdict():
    d0 = Transformer("d0", const("x"), Usage(total_tokens=1))
    d1 = Transformer("d1", const("y"), Usage(total_tokens=2))
    arb = Transformer("arb", const("THE_VERDICT"), Usage(total_tokens=10))

    reply = await Debate("debate2", 1, arb, d0, d1).ask(Prompt(text="question"))

    assert isinstance(reply, Response)
    assert reply.message.content == "THE_VERDICT"
    assert reply.usage is not None
    assert reply.usage.total_tokens == 13


@pytest.mark.asyncio
async def test_debater_error_short_circuits():
    d0 = Transformer("d0", const("ok"))
    d1_calls = []

    def d1_fn(_text):
        d1_calls.append(1)
        if len(d1_calls) >= 2:
            raise RuntimeError("d1-fail-turn2")
        return "ok"

    d1 = Transformer("d1", d1_fn)
    arb = Transformer("arb", const("verdict"))

    reply = await Debate("debate3", 2, arb, d0, d1).ask(Prompt(text="topic"))

    assert isinstance(reply, AgentError)
    assert "debater 1" in str(reply)
    assert "turn 2" in str(reply)
    assert arb.calls == 0


@pytest.mark.asyncio
async def test_arbiter_error_propagated():
    d0 = Transformer("d0", const("ok"))
    d1 = Transformer("d1", const("ok"))
    arb = Transformer("arb", fail("arb-fail"))

    reply = await Debate("debate4", 1, arb, d0, d1).ask(Prompt(text="topic"))

    assert isinstance(reply, AgentError)
    assert "arbiter" in str(reply)
    assert "arb-fail" in str(reply)


@pytest.mark.asyncio
async def test_stream_only_arbiter():
    d0 = Transformer("d0", const("d0-reply"))
    d1 = Transformer("d1", const("d1-reply"))
    arb = Transformer("arb", const("arb-verdict"))
    stream = ChunkStream()

    reply = await Debate("debate5", 1, arb, d0, d1).ask(
        Prompt(text="topic", stream=stream)
    )

    deltas = [c.delta async for c in stream if c.delta]
    assert deltas == ["stream-from-arb"]
    assert isinstance(reply, Response)
    assert reply.message.content == "arb-verdict"


@pytest.mark.asyncio
async def test_stream_closed_when_debater_fails():
    d0 = Transformer("d0", fail("nope"))
    d1 = Transformer("d1", const("ok"))
    arb = Transformer("arb", const("v"))
    stream = ChunkStream()

    reply = await Debate("d", 1, arb, d0, d1).ask(Prompt(text="t", stream=stream))

    assert isinstance(reply, AgentError)
    assert stream.closed
    assert [c async for c in stream] == []


def test_none_arbiter_raises():
    d0 = Transformer("pd0", const("x"))
    d1 = Transformer("pd1", const("x"))
    with pytest.raises(ValueError):
        Debate("x", 1, None, d0, d1)


def test_fewer_than_two_debaters_raises():
    d0 = Transformer("pd0", const("x"))
    arb = Transformer("parb", const("x"))
    with pytest.raises(ValueError):
        Debate("x", 1, arb, d0)


def test_rounds_below_one_raises():
    d0 = Transformer("pd0", const("x"))
    d1 = Transformer("pd1", const("x"))
    arb = Transformer("parb", const("x"))
    with pytest.raises(ValueError):
        Debate("x", 0, arb, d0, d1)


@pytest.mark.asyncio
async def test_rejects_non_prompt():
    d = Debate("d", 1, Transformer("a", str), Transformer("b", str), Transformer("c", str))
    with pytest.raises(TypeError):
        await d.ask(42)