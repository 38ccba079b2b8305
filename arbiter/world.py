"""Worlds: collections of agents that share a messaging layer and move through stages together."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from arbiter.agent import Agent
from arbiter.machine import MachineHalt, MachineInstruction, State
from arbiter.messager import Broadcast, Messager

__all__ = ["World"]

logger = logging.getLogger(__name__)

_STAGE_STATES = {
    MachineInstruction.SYNC: State.SYNCING,
    MachineInstruction.START: State.STARTING,
    MachineInstruction.PROCESS: State.PROCESSING,
}


class World:
    """A set of agents that share one messaging layer.

    The world runs its agents through their stages in lockstep. Each agent
    syncs, then each starts up, then all of them process concurrently until
    every one of their behaviors has halted. :meth:`stop` asks every
    processing behavior to halt.
    """

    def __init__(self, world_id: str, messager: Optional[Messager] = None) -> None:
        self.id = world_id
        self.state = State.UNINITIALIZED
        self.agents: dict[str, Agent] = {}
        self.messager = messager if messager is not None else Messager()
        self._agent_distributors: Optional[list[Broadcast[str]]] = None

    def __repr__(self) -> str:
        return f"World(id={self.id!r}, state={self.state}, agents={sorted(self.agents)!r})"

    def add_agent(self, agent: Agent) -> None:
        """Add ``agent``, replacing any agent that has the same id."""
        self.agents[agent.id] = agent

    async def run(self) -> None:
        """Sync, start up and then process until every agent has finished."""
        for instruction in _STAGE_STATES:
            await self.execute(instruction)

    async def stop(self) -> None:
        """Ask every behavior of every processing agent to halt."""
        await self.execute(MachineInstruction.STOP)

    async def execute(self, instruction: MachineInstruction) -> None:
        """Carry out one stage for every agent in the world."""
        if instruction is MachineInstruction.STOP:
            self._halt_agents()
            return
        self.state = _STAGE_STATES[instruction]
        logger.info("World %s is %s.", self.id, self.state.value)
        agents = list(self.agents.values())
        if instruction is MachineInstruction.PROCESS:
            self._agent_distributors = [agent.distributor for agent in agents]
        await asyncio.gather(*(agent.execute(instruction) for agent in agents))

    def _halt_agents(self) -> None:
        distributors = self._agent_distributors
        if distributors is None:
            raise RuntimeError(f"world {self.id!r} has no processing agents to stop")
        self._agent_distributors = None
        halt = MachineHalt().to_json()
        for distributor in distributors:
            distributor.send(halt)