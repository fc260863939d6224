# tinyagents

Small, dependency-free building blocks for composing LLM agents in the
actor style:

- **Supervision** (`tinyagents.supervisor`): `Strategy`, `RestartStrategy`
  (bounded retries within a time window, with exponential backoff),
  `StopStrategy`, and `default_strategy()` (up to 5 restarts per minute,
  with backoff running from 50 ms to 1 s). A strategy returns a
  `Decision` that carries a `Directive` and a delay.
- **Tools** (`tinyagents.tool`): the `Tool` interface, the `FuncTool`
  adapter, a thread-safe `ToolRegistry`, and `spec()` / `specs()` for
  turning tools into neutral `ToolSpec` descriptions. Invoking a name
  that is not registered raises `UnknownToolError`.
- **Placement** (`tinyagents.cluster_registry`): `ClusterRegistry` keeps
  a consistent-hash ring (FNV-64a, 128 virtual nodes per member by
  default) over a `Cluster`'s members. It answers `owner_of(path)` and
  `is_local(path)`, and rebuilds the ring on every membership `Event`.
- **Teams**: coordinators that each act like a single agent. You `ask`
  one with a `Prompt` and get back a `Response` or an `AgentError`:
  - `Pipeline`: each stage's output becomes the next stage's input.
  - `Broadcast`: sends the prompt to every member in parallel and joins
    the replies with `"\n---\n"` in member order.
  - `KeyRouter`: picks one member from a stable FNV-64a hash of a key.
  - `Hierarchy`: runs the workers in parallel, then asks a lead to
    synthesize their answers.
  - `Debate`: runs round-robin turns between debaters, then asks an
    arbiter for a verdict.

  Token `Usage` is summed across every call a coordinator makes. When a
  prompt carries a `ChunkStream`, only the final step (the last stage,
  the lead, the arbiter or the chosen member) streams into it. If that
  step is never reached, the stream is closed.
- **Worker pools** (`tinyagents.pool`): `RouterPool` sends each message
  to its workers by `Kind`: round-robin, random, broadcast, consistent
  hash (through `HashKeyer` or `RouterConfig`), or least-loaded.
- **Transport** (`tinyagents.transport`, `tinyagents.tcp`): `Envelope`
  messages carried over length-prefixed frames. `TcpTransport` performs
  a node-identity handshake, reuses the connection per node, and sends
  heartbeats.

## Install

```
pip install tinyagents
```

For the test suite:

```
pip install "tinyagents[test]"
pytest
```

## Example: a two-stage pipeline

```python
import asyncio

from tinyagents.pipeline import Pipeline
from tinyagents.teamcore import Prompt


async def main(upper, exclaim):
    # upper and exclaim are any team Members that answer Prompts
    pipe = Pipeline("shout", upper, exclaim)
    reply = await pipe.ask(Prompt(text="hi"))
    print(reply.message.content)
```

Teams nest. A `Pipeline` can be a member of a `Broadcast`, which in turn
can be a worker in a `Hierarchy`.

## Example: which node owns an actor?

```python
from tinyagents.cluster_registry import ClusterRegistry

registry = ClusterRegistry(local_registry, cluster, 128)
owner = registry.owner_of("/user/agent-1")
if registry.is_local("/user/agent-1"):
    ...
registry.close()  # safe to call more than once
```