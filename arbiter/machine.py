"""State machine primitives: instructions, states, behaviors and the engine that drives them."""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from arbiter.messager import ChannelError, Receiver

__all__ = [
    "Behavior",
    "Engine",
    "MachineHalt",
    "MachineInstruction",
    "State",
    "is_halt_message",
]

logger = logging.getLogger(__name__)


class MachineInstruction(enum.Enum):
    """Instructions that can be given to a state machine."""

    SYNC = "sync"
    START = "start"
    PROCESS = "process"
    STOP = "stop"


class State(enum.Enum):
    """The lifecycle states of an entity run as a state machine."""

    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    STARTING = "starting"
    PROCESSING = "processing"
    STOPPED = "stopped"


@dataclass(frozen=True)
class MachineHalt:
    """Signal that a behavior's processing should stop."""

    def to_json(self) -> str:
        return "null"


def is_halt_message(text: str) -> bool:
    """Whether ``text`` is the serialized form of :class:`MachineHalt`."""
    try:
        return json.loads(text) is None
    except ValueError:
        return False


class Behavior(ABC):
    """What a state machine does at each of its stages.

    ``decode`` turns a raw event string into the event handed to ``process``.
    The default parses JSON and treats ``null`` (the halt signal) as not an event.
    """

    def decode(self, text: str) -> Any:
        value = json.loads(text)
        if value is None:
            raise ValueError("null is not an event")
        return value

    async def sync(self) -> None:
        """Bring the behavior up to date with the world; by default, just yield to the loop."""
        await asyncio.sleep(0)

    async def startup(self) -> None:
        """Run one-off start-up work; by default, just yield to the loop."""
        await asyncio.sleep(0)

    @abstractmethod
    async def process(self, event: Any) -> Optional[MachineHalt]:
        """Handle one event; return a :class:`MachineHalt` to stop processing."""


# The one-shot stages: the state an engine enters and the behavior hook it runs.
_HOOKS = {
    MachineInstruction.SYNC: (State.SYNCING, "sync"),
    MachineInstruction.START: (State.STARTING, "startup"),
}


class Engine:
    """Drives one :class:`Behavior` from a receiver of raw event strings."""

    def __init__(self, behavior: Behavior, event_receiver: Receiver[str]) -> None:
        self.behavior = behavior
        self.state = State.UNINITIALIZED
        self._event_receiver: Optional[Receiver[str]] = event_receiver

    def __repr__(self) -> str:
        return f"Engine(behavior={self.behavior!r}, state={self.state})"

    async def execute(self, instruction: MachineInstruction) -> None:
        if instruction is MachineInstruction.PROCESS:
            logger.debug("Behavior is processing.")
            await self._process()
            return
        try:
            state, hook = _HOOKS[instruction]
        except KeyError:
            raise RuntimeError("an engine is never told to stop directly") from None
        logger.debug("Behavior is %s.", state.value)
        self.state = state
        await getattr(self.behavior, hook)()

    async def _process(self) -> None:
        receiver = self._event_receiver
        if receiver is None:
            raise RuntimeError("this engine has already processed its events")
        self._event_receiver = None
        while True:
            try:
                raw = await receiver.recv()
            except ChannelError:
                return
            try:
                event = self.behavior.decode(raw)
            except ValueError:
                if is_halt_message(raw):
                    logger.warning("Behavior received `MachineHalt` message. Breaking!")
                    return
                logger.debug("Event received by behavior that could not be decoded.")
                continue
            if await self.behavior.process(event) is not None:
                return