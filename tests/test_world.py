import asyncio
from typing import Callable, Optional

import pytest

from arbiter.agent import Agent
from arbiter.machine import Behavior, MachineHalt, MachineInstruction, State
from arbiter.messager import Message, Messager, To, decode_message
from arbiter.world import World

AGENT_ID = "agent"
DELAY = 0.01


class TimedMessage(Behavior):
    def __init__(
        self,
        delay: float,
        receive_data: str,
        send_data: str,
        messager: Messager,
        max_count: Optional[int] = None,
    ) -> None:
        self.delay = delay
        self.receive_data = receive_data
        self.send_data = send_data
        self.messager = messager
        self.count = 0
        self.max_count = max_count
        self.events: list[Message] = []
        self.synced = False
        self.started = False

    def decode(self, text: str) -> Message:
        return decode_message(text)

    async def sync(self) -> None:
        await asyncio.sleep(self.delay)
        self.synced = True

    async def startup(self) -> None:
        await asyncio.sleep(self.delay)
        self.started = True

    async def process(self, event: Message) -> Optional[MachineHalt]:
        self.events.append(event)
        if event.data == self.receive_data:
            await self.messager.send(Message(self.messager.id, To.all(), self.send_data))
            self.count += 1
        if self.max_count is not None and self.count == self.max_count:
            return MachineHalt()
        await asyncio.sleep(self.delay)
        return None


def _timed(agent: Agent, receive: str, send: str, max_count: Optional[int] = 2) -> TimedMessage:
    return TimedMessage(DELAY, receive, send, agent.messager.join_with_id(agent.id), max_count)


def _listener(world: World) -> TimedMessage:
    """A behavior that records every message and never halts on its own."""
    agent = Agent(AGENT_ID, world.messager)
    behavior = _timed(agent, "", "", max_count=None)
    world.add_agent(agent.with_behavior(behavior))
    return behavior


async def _run_and_collect(world: World, first: Message, count: int) -> list[Message]:
    messager = world.messager.join_with_id("god")
    await messager.send(first)
    await asyncio.wait_for(world.run(), 5.0)
    stream = messager.stream()
    return [await asyncio.wait_for(anext(stream), 1.0) for _ in range(count)]


async def _wait_until(predicate: Callable[[], bool]) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), 1.0)


@pytest.mark.asyncio
async def test_echoer():
    world = World("world")
    agent = Agent(AGENT_ID, world.messager)
    behavior = _timed(agent, "Hello, world!", "Hello, world!")
    world.add_agent(agent.with_behavior(behavior))

    received = await _run_and_collect(world, Message("god", To.agent(AGENT_ID), "Hello, world!"), 2)
    assert [m.data for m in received] == ["Hello, world!", "Hello, world!"]
    assert all(m.sender == AGENT_ID for m in received)
    assert behavior.count == 2
    assert behavior.synced and behavior.started


@pytest.mark.asyncio
async def test_ping_pong():
    world = World("world")
    agent = Agent(AGENT_ID, world.messager)
    behavior_ping = _timed(agent, "pong", "ping")
    behavior_pong = _timed(agent, "ping", "pong")
    world.add_agent(agent.with_behavior(behavior_ping).with_behavior(behavior_pong))

    received = await _run_and_collect(world, Message("god", To.agent(AGENT_ID), "ping"), 4)
    assert [m.data for m in received] == ["pong", "ping", "pong", "ping"]
    assert behavior_ping.count == behavior_pong.count == 2


@pytest.mark.asyncio
async def test_ping_pong_two_agent():
    world = World("world")
    for agent_id, receive, send in [("agent_ping", "pong", "ping"), ("agent_pong", "ping", "pong")]:
        agent = Agent(agent_id, world.messager)
        world.add_agent(agent.with_behavior(_timed(agent, receive, send)))

    received = await _run_and_collect(world, Message("god", To.all(), "ping"), 5)
    assert [m.data for m in received] == ["ping", "pong", "ping", "pong", "ping"]
    assert [m.sender for m in received] == [
        "god",
        "agent_pong",
        "agent_ping",
        "agent_pong",
        "agent_ping",
    ]
    assert world.state is State.PROCESSING


def test_add_agent_keys_by_id_and_replaces():
    world = World("world")
    first = Agent("a", world.messager)
    second = Agent("a", world.messager)
    world.add_agent(first)
    assert world.agents == {"a": first}
    world.add_agent(second)
    assert world.agents["a"] is second
    assert len(world.agents) == 1


@pytest.mark.asyncio
async def test_sync_and_start_set_states():
    world = World("world")
    listener = _listener(world)

    await world.execute(MachineInstruction.SYNC)
    assert world.state is State.SYNCING
    assert (listener.synced, listener.started) == (True, False)

    await world.execute(MachineInstruction.START)
    assert world.state is State.STARTING
    assert listener.started is True


@pytest.mark.asyncio
async def test_stop_halts_processing_behaviors():
    world = World("world")
    listener = _listener(world)

    message = Message("god", To.all(), "hello")
    await world.messager.join_with_id("god").send(message)
    task = asyncio.ensure_future(world.run())

    await _wait_until(lambda: bool(listener.events))
    assert world.state is State.PROCESSING
    await world.stop()
    await asyncio.wait_for(task, 1.0)

    assert listener.events == [message]
    assert listener.synced and listener.started


@pytest.mark.asyncio
async def test_stop_before_processing_raises():
    world = World("world")
    with pytest.raises(RuntimeError):
        await world.stop()


@pytest.mark.asyncio
async def test_stop_twice_raises():
    world = World("world")
    _listener(world)
    task = asyncio.ensure_future(world.run())

    await _wait_until(lambda: world.state is State.PROCESSING)
    await world.stop()
    await asyncio.wait_for(task, 1.0)
    with pytest.raises(RuntimeError):
        await world.stop()


@pytest.mark.asyncio
async def test_run_with_agent_without_behaviors_raises():
    world = World("world")
    world.add_agent(Agent(AGENT_ID, world.messager))
    with pytest.raises(RuntimeError):
        await world.run()
    assert world.state is State.SYNCING


@pytest.mark.asyncio
async def test_run_with_no_agents_reaches_processing():
    world = World("empty")
    await asyncio.wait_for(world.run(), 1.0)
    assert world.state is State.PROCESSING
    assert world.agents == {}