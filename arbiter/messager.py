"""Broadcast channels and the messaging layer agents use to talk to each other."""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterator, Generic, Optional, TypeVar

__all__ = [
    "Broadcast",
    "ChannelError",
    "Message",
    "Messager",
    "Receiver",
    "To",
    "decode_message",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CAPACITY = 512


class ChannelError(RuntimeError):
    """Raised when a broadcast cannot be sent or a receiver fell behind."""

    def __init__(self, message: str, skipped: int = 0) -> None:
        super().__init__(message)
        self.skipped = skipped


class Receiver(Generic[T]):
    """One subscription to a :class:`Broadcast`, holding at most ``capacity`` items."""

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._buffer: deque[T] = deque()
        self._lagged = 0
        self._waiter: Optional[asyncio.Event] = None

    def _deliver(self, item: T) -> None:
        self._buffer.append(item)
        if len(self._buffer) > self._capacity:
            self._buffer.popleft()
            self._lagged += 1
        if self._waiter is not None:
            self._waiter.set()

    async def recv(self) -> T:
        """Wait for the next item; raise :class:`ChannelError` once if items were dropped."""
        while True:
            if self._lagged:
                skipped, self._lagged = self._lagged, 0
                raise ChannelError(f"receiver lagged behind by {skipped} item(s)", skipped)
            if self._buffer:
                return self._buffer.popleft()
            self._waiter = asyncio.Event()
            try:
                await self._waiter.wait()
            finally:
                self._waiter = None


class Broadcast(Generic[T]):
    """A multi-consumer channel: every live receiver gets every item sent after it subscribed."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity!r}")
        self.capacity = capacity
        self._receivers: weakref.WeakSet[Receiver[T]] = weakref.WeakSet()

    def subscribe(self) -> Receiver[T]:
        receiver: Receiver[T] = Receiver(self.capacity)
        self._receivers.add(receiver)
        return receiver

    def send(self, item: T) -> int:
        """Deliver ``item`` to every receiver and return how many there were."""
        receivers = list(self._receivers)
        if not receivers:
            raise ChannelError("no active receivers on the broadcast channel")
        for receiver in receivers:
            receiver._deliver(item)
        return len(receivers)


@dataclass(frozen=True)
class To:
    """The recipient of a message: everyone, or one agent by id."""

    agent_id: Optional[str] = None

    @classmethod
    def all(cls) -> To:
        return cls(None)

    @classmethod
    def agent(cls, agent_id: str) -> To:
        return cls(agent_id)

    @property
    def is_all(self) -> bool:
        return self.agent_id is None

    def _to_value(self) -> Any:
        return "All" if self.agent_id is None else {"Agent": self.agent_id}

    @classmethod
    def _from_value(cls, value: Any) -> To:
        if value == "All":
            return cls.all()
        if isinstance(value, dict) and len(value) == 1 and isinstance(value.get("Agent"), str):
            return cls.agent(value["Agent"])
        raise ValueError(f"invalid recipient: {value!r}")

    def to_json(self) -> str:
        return json.dumps(self._to_value(), separators=(",", ":"))


@dataclass(frozen=True)
class Message:
    """A message sent between agents; ``data`` is free text, often JSON."""

    sender: str
    to: To
    data: str

    def to_json(self) -> str:
        payload = {"from": self.sender, "to": self.to._to_value(), "data": self.data}
        return json.dumps(payload, separators=(",", ":"))


def decode_message(text: str) -> Message:
    """Parse a message from its JSON form, raising ``ValueError`` if it is not one."""
    value = json.loads(text)
    if not isinstance(value, dict):
        raise ValueError("a message must be a JSON object")
    try:
        sender, to, data = value["from"], value["to"], value["data"]
    except KeyError as exc:
        raise ValueError(f"message is missing field {exc.args[0]!r}") from None
    if not isinstance(sender, str) or not isinstance(data, str):
        raise ValueError("message fields 'from' and 'data' must be strings")
    return Message(sender, To._from_value(to), data)


class Messager:
    """A handle on a shared broadcast of messages, optionally tied to an agent id."""

    def __init__(
        self,
        agent_id: Optional[str] = None,
        broadcast: Optional[Broadcast[Message]] = None,
    ) -> None:
        self.id = agent_id
        self.broadcast: Broadcast[Message] = (
            broadcast if broadcast is not None else Broadcast(DEFAULT_CAPACITY)
        )
        self._receiver: Optional[Receiver[Message]] = self.broadcast.subscribe()

    def __repr__(self) -> str:
        return f"Messager(id={self.id!r})"

    def for_agent(self, agent_id: str) -> Messager:
        return Messager(agent_id, self.broadcast)

    def join_with_id(self, agent_id: Optional[str]) -> Messager:
        """Return a new handle on the same broadcast using ``agent_id``."""
        return Messager(agent_id, self.broadcast)

    def stream(self) -> AsyncIterator[Message]:
        """Yield messages addressed to everyone or to this messager's id.

        The stream owns this messager's subscription, so it may be taken once.
        It ends if the subscription falls behind the broadcast.
        """
        receiver = self._receiver
        if receiver is None:
            raise RuntimeError("the message stream of this messager was already taken")
        self._receiver = None
        return self._filtered(receiver)

    async def _filtered(self, receiver: Receiver[Message]) -> AsyncIterator[Message]:
        while True:
            try:
                message = await receiver.recv()
            except ChannelError:
                return
            if message.to.is_all or (self.id is not None and message.to.agent_id == self.id):
                yield message

    async def send(self, message: Message) -> None:
        logger.debug("Sending message via messager.")
        self.broadcast.send(message)