# arbiter

An asyncio library for building and running simulations of multi-agent
systems. Agents own behaviors, talk to one another over a shared messaging
layer, and are driven through a common lifecycle by the world that holds
them. It also has seeded Poisson sampling for modelling block sizes and a
nonce manager that wraps a transaction-sending client.

It has no dependencies outside the standard library.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `arbiter.messager`

- `Broadcast(capacity=512)`: a multi-consumer channel. `subscribe()` returns
  a `Receiver` that gets every item sent after it subscribed. `send(item)`
  delivers to every live receiver and returns how many there were. It raises
  `ChannelError` when nobody is listening.
- `Receiver.recv()`: waits for the next item. A receiver holds at most
  `capacity` items. If older ones were dropped, the next `recv()` raises
  `ChannelError` once, and its `skipped` attribute says how many were dropped.
- `To.all()` and `To.agent(agent_id)`: the recipient of a message.
- `Message(sender, to, data)`: a frozen dataclass. `to_json()` gives the form
  `{"from":...,"to":"All"|{"Agent":...},"data":...}`, and
  `decode_message(text)` parses that form back. It raises `ValueError` on
  anything else.
- `Messager(agent_id=None, broadcast=None)`: a handle on a shared broadcast of
  messages. `join_with_id(agent_id)` and `for_agent(agent_id)` make new
  handles on the same broadcast. `stream()` is an async iterator of the
  messages addressed to everyone or to this handle's id. It can be taken only
  once per handle, and it ends if its subscription falls behind.
  `send(message)` is a coroutine that broadcasts a message.

### `arbiter.machine`

- `MachineInstruction`: `SYNC`, `START`, `PROCESS`, `STOP`.
- `State`: `UNINITIALIZED`, `SYNCING`, `STARTING`, `PROCESSING`, `STOPPED`.
- `MachineHalt`: the halt signal. It serializes to `null`, and
  `is_halt_message(text)` recognises that form.
- `Behavior`: an abstract base class. Implement `async process(event)` and
  return a `MachineHalt` from it to stop. `sync()` and `startup()` are
  optional hooks. `decode(text)` turns a raw event string into the event
  passed to `process`. By default it parses JSON and rejects `null`.
  Override it to use `decode_message` when the behavior handles `Message`s.
- `Engine(behavior, event_receiver)`: drives one behavior. Its
  `execute(instruction)` runs `sync` or `startup`, or for `PROCESS` feeds
  decoded events to `process`. Processing ends on a halt returned by the
  behavior, on a halt message, or when the receiver falls behind. Strings
  that cannot be decoded are skipped.

### `arbiter.agent`

`Agent(agent_id, messager)` joins the messaging layer that `messager` belongs
to under `agent_id`. `with_behavior(behavior)` adds a behavior and returns
the agent. `execute(instruction)` runs all of its behaviors concurrently
through one stage.

While processing, each message meant for the agent is sent to every behavior
as JSON through the agent's `distributor`. An agent without behaviors cannot
be run, and an agent processes its messages only once.

### `arbiter.world`

`World(world_id, messager=None)` holds agents in `agents`, keyed by id.

- `add_agent(agent)` adds an agent. An agent with the same id is replaced.
- `run()` syncs, starts and then processes every agent. It returns once all
  of their behaviors have halted.
- `stop()` sends the halt signal to every behavior of the agents that are
  processing.
- `execute(instruction)` runs a single stage.

### `arbiter.math`

`SeededPoisson(rate_parameter, time_step, seed)` gives a reproducible
sequence of Poisson samples from `sample()`. The same rate and seed always
give the same values, and `time_step` does not affect them. The rate must be
positive and finite. The seed and time step must be unsigned 64-bit and
32-bit integers.

### `arbiter.nonce`

`NonceManagerMiddleware(inner, address)` assigns nonces locally. `inner` is
any object with the async methods `get_transaction_count(address, block)`,
`fill_transaction(tx, block)` and `send_transaction(tx, block)`.
Transactions are objects with a `nonce` attribute, which is `None` when unset.

- `initialize_nonce(block=None)` reads the starting nonce once.
- `next()` hands out the current nonce and advances it.
- `fill_transaction(tx, block=None)` assigns the next nonce if `tx` has none,
  then passes `tx` on to `inner`.
- `send_transaction(tx, block=None)` sends a copy of `tx` with a managed nonce.
  If sending fails and the count reported by `inner` differs from the local
  nonce, the local nonce is reset to that count and the transaction is sent
  once more.

Failures from `inner` are raised as `NonceManagerError`, with the original
error in its `inner` attribute.

## Example

```python
import asyncio

from arbiter.agent import Agent
from arbiter.machine import Behavior, MachineHalt
from arbiter.messager import Message, To, decode_message
from arbiter.world import World


class Echo(Behavior):
    def __init__(self, messager):
        self.messager = messager
        self.count = 0

    def decode(self, text):
        return decode_message(text)

    async def process(self, event):
        if event.data == "ping":
            await self.messager.send(Message(self.messager.id, To.all(), "pong"))
            self.count += 1
        if self.count == 2:
            return MachineHalt()
        return None


async def main():
    world = World("world")
    agent = Agent("echo", world.messager)
    agent.with_behavior(Echo(agent.messager.join_with_id("echo")))
    world.add_agent(agent)

    outside = world.messager.join_with_id("outside")
    run = asyncio.create_task(world.run())
    await asyncio.sleep(0)
    await outside.send(Message("outside", To.agent("echo"), "ping"))
    await outside.send(Message("outside", To.all(), "ping"))
    await run


asyncio.run(main())
```

## What it does not do

There is no blockchain or EVM environment in this package, and no client that
sends transactions or watches contract events. Agents react only to messages
on their messaging layer. The nonce manager works only on top of a client you
provide. There is no command-line program.