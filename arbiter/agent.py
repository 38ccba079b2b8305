"""Agents: entities that run a set of behaviors fed by the messages they receive."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Optional

from arbiter.machine import Behavior, Engine, MachineInstruction, State
from arbiter.messager import DEFAULT_CAPACITY, Broadcast, ChannelError, Message, Messager

__all__ = ["Agent"]

logger = logging.getLogger(__name__)


class Agent:
    """An entity that processes events with its behaviors and can act on them.

    The agent moves through the same stages as the world that owns it: it syncs,
    starts up and then processes. While processing, every message addressed to
    everyone or to this agent is serialized to JSON and handed to each of its
    behaviors through ``distributor``; anything else sent on ``distributor``
    (such as the halt signal) reaches the behaviors the same way.
    """

    def __init__(self, agent_id: str, messager: Messager) -> None:
        """Create an agent on the messaging layer that ``messager`` belongs to."""
        self.id = agent_id
        self.state = State.UNINITIALIZED
        self.messager: Optional[Messager] = messager.for_agent(agent_id)
        self.distributor: Broadcast[str] = Broadcast(DEFAULT_CAPACITY)
        self.engines: list[Engine] = []

    def __repr__(self) -> str:
        return f"Agent(id={self.id!r}, state={self.state}, behaviors={len(self.engines)})"

    def with_behavior(self, behavior: Behavior) -> Agent:
        """Add a behavior for the agent to run and return the agent."""
        self.engines.append(Engine(behavior, self.distributor.subscribe()))
        return self

    async def execute(self, instruction: MachineInstruction) -> None:
        """Carry out one stage of the agent's life."""
        if instruction is MachineInstruction.SYNC:
            logger.debug("Agent %s is syncing.", self.id)
            self.state = State.SYNCING
            await self._run(instruction)
        elif instruction is MachineInstruction.START:
            logger.debug("Agent %s is starting up.", self.id)
            await self._run(instruction)
        elif instruction is MachineInstruction.PROCESS:
            logger.debug("Agent %s is processing.", self.id)
            await self._process()
        else:
            raise RuntimeError("an agent is never told to stop directly")

    def _require_engines(self) -> None:
        if not self.engines:
            raise RuntimeError(f"agent {self.id!r} has no behaviors to run")

    async def _run(self, instruction: MachineInstruction) -> None:
        self._require_engines()
        await asyncio.gather(*(engine.execute(instruction) for engine in self.engines))

    async def _process(self) -> None:
        self._require_engines()
        messager = self.messager
        if messager is None:
            raise RuntimeError(f"agent {self.id!r} has already processed its messages")
        self.state = State.PROCESSING
        self.messager = None
        forwarder = asyncio.ensure_future(self._forward(messager.stream()))
        try:
            await self._run(MachineInstruction.PROCESS)
        finally:
            forwarder.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await forwarder

    async def _forward(self, messages: AsyncIterator[Message]) -> None:
        async for message in messages:
            try:
                self.distributor.send(message.to_json())
            except ChannelError:
                logger.debug("Agent %s has no behaviors listening; stopped forwarding.", self.id)
                return