"""In-process communication hub.

Provides three pieces of infrastructure shared by the other components:

- Event pub/sub by name, used to propagate task and session lifecycle events
  to observers such as a streaming transport
- Communication channels with direct, broadcast and pubsub topologies
- A runtime registry of named tools that can be invoked with a payload

The hub has no knowledge of tasks or sessions.
"""

import inspect
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError


logger = logging.getLogger(__name__)

ALL_EVENTS = "*"


class Event(BaseModel):
    """A named lifecycle event with an opaque payload."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


EventHandler = Callable[[Event], Awaitable[None] | None]


class ChannelType(StrEnum):
    """Participant topology of a channel."""

    DIRECT = "direct"
    BROADCAST = "broadcast"
    PUBSUB = "pubsub"


class MessageType(StrEnum):
    """Kind of message carried by a channel."""

    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    BROADCAST = "broadcast"


class Message(BaseModel):
    """Envelope exchanged over a communication channel."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    sender: str
    recipient: str | None = None
    type: MessageType = MessageType.NOTIFICATION
    protocol: str = "internal"
    payload: Any = None
    timestamp: datetime = Field(default_factory=datetime.now)
    correlation_id: str | None = None
    reply_to: str | None = None


MessageHandler = Callable[[Message], Awaitable[None] | None]


class Tool(BaseModel):
    """A remotely callable named capability."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_model: type[BaseModel] | None = None
    output_model: type[BaseModel] | None = None
    handler: Callable[[Any], Any]

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the accepted payload."""
        return self.input_model.model_json_schema() if self.input_model else {}

    @property
    def output_schema(self) -> dict[str, Any]:
        """JSON schema of the produced output."""
        return self.output_model.model_json_schema() if self.output_model else {}


async def _call(handler: Callable[..., Any], *args: Any) -> Any:
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class CommunicationChannel:
    """A channel binding a fixed set of participants to one topology."""

    def __init__(
        self,
        channel_type: ChannelType,
        participants: list[str],
        protocol: str = "internal",
    ):
        """Initialize the channel.

        Raises:
            ValidationError: If the participant list does not fit the topology

        """
        participants = list(dict.fromkeys(participants))
        if channel_type == ChannelType.DIRECT and len(participants) != 2:
            raise ValidationError(
                f"Direct channels need exactly 2 participants, got {len(participants)}"
            )
        if channel_type == ChannelType.BROADCAST and not participants:
            raise ValidationError("Broadcast channels need at least 1 participant")

        self.id = str(uuid4())
        self.type = channel_type
        self.protocol = protocol
        self.participants = participants
        self.closed = False
        self._handlers: list[tuple[str | None, MessageHandler]] = []

    def receive(self, handler: MessageHandler, participant: str | None = None) -> None:
        """Register a handler, optionally on behalf of one participant."""
        if participant is not None and participant not in self.participants:
            raise ValidationError(
                f"{participant} is not a participant of channel {self.id}"
            )
        self._handlers.append((participant, handler))

    async def send(self, message: Message) -> int:
        """Deliver a message and return the number of handlers reached."""
        if self.closed:
            raise ValidationError(f"Channel {self.id} is closed")
        if self.type != ChannelType.PUBSUB and message.sender not in self.participants:
            raise ValidationError(
                f"{message.sender} is not a participant of channel {self.id}"
            )

        recipients = self._recipients(message)
        delivered = 0
        for participant, handler in list(self._handlers):
            if participant is not None and participant not in recipients:
                continue
            try:
                await _call(handler, message)
                delivered += 1
            except Exception as e:
                logger.error(f"Channel {self.id} handler failed: {e}")
        return delivered

    def _recipients(self, message: Message) -> set[str]:
        if self.type in (ChannelType.DIRECT, ChannelType.BROADCAST):
            return {p for p in self.participants if p != message.sender}
        return set(self.participants) | {message.recipient or ""}

    async def close(self) -> None:
        """Close the channel and drop its handlers."""
        self.closed = True
        self._handlers.clear()


class CommunicationHub:
    """Publish/subscribe bus plus channel and tool registries."""

    def __init__(self, history_size: int = 1000):
        """Initialize an empty hub."""
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._channels: dict[str, CommunicationChannel] = {}
        self._tools: dict[str, Tool] = {}
        self._agents: set[str] = set()
        self._history: deque[Event] = deque(maxlen=history_size)
        self.stats = {
            "events_published": 0,
            "handler_errors": 0,
            "tool_invocations": 0,
        }

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to an event name (``"*"`` for every event).

        Returns:
            A callable that removes the subscription

        """
        self._subscribers[event].append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: EventHandler) -> bool:
        """Remove a subscription; False if it was not registered."""
        handlers = self._subscribers.get(event, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._subscribers[event]
        return True

    async def publish(self, event: str, payload: dict[str, Any] | None = None) -> Event:
        """Publish an event to its subscribers and to wildcard subscribers."""
        message = Event(name=event, payload=payload or {})
        self._history.append(message)
        self.stats["events_published"] += 1

        handlers = list(self._subscribers.get(event, []))
        if event != ALL_EVENTS:
            handlers += self._subscribers.get(ALL_EVENTS, [])

        for handler in handlers:
            try:
                await _call(handler, message)
            except Exception as e:
                self.stats["handler_errors"] += 1
                logger.error(f"Subscriber for '{event}' failed: {e}")

        return message

    def get_recent_events(self, event: str | None = None, limit: int = 50) -> list[Event]:
        """Most recent events, optionally filtered by name, oldest first."""
        events = [e for e in self._history if event is None or e.name == event]
        return events[-limit:]

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def create_channel(
        self,
        channel_type: ChannelType | str,
        participants: list[str],
        protocol: str = "internal",
    ) -> CommunicationChannel:
        """Create and track a channel."""
        try:
            channel_type = ChannelType(channel_type)
        except ValueError as e:
            raise ValidationError(f"Unknown channel type: {channel_type}") from e

        channel = CommunicationChannel(channel_type, participants, protocol)
        self._channels[channel.id] = channel
        logger.debug(f"Created {channel_type.value} channel {channel.id}")
        return channel

    def get_channel(self, channel_id: str) -> CommunicationChannel:
        """Get a channel by id."""
        channel = self._channels.get(channel_id)
        if channel is None:
            raise NotFoundError("Channel", channel_id)
        return channel

    async def close_channel(self, channel_id: str) -> None:
        """Close and forget a channel."""
        channel = self.get_channel(channel_id)
        await channel.close()
        del self._channels[channel_id]

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def register_tool(self, tool: Tool) -> None:
        """Register a tool, replacing any tool with the same name."""
        if tool.name in self._tools:
            logger.warning(f"Replacing tool '{tool.name}'")
        self._tools[tool.name] = tool
        logger.info(f"Registered tool '{tool.name}'")

    def unregister_tool(self, name: str) -> bool:
        """Remove a tool; False if it was not registered."""
        if self._tools.pop(name, None) is None:
            return False
        logger.info(f"Unregistered tool '{name}'")
        return True

    def list_tools(self) -> list[Tool]:
        """All registered tools."""
        return list(self._tools.values())

    async def invoke_tool(self, name: str, payload: Any = None) -> Any:
        """Invoke a tool by name.

        Raises:
            NotFoundError: If no tool has that name
            ValidationError: If the payload or output does not match its model

        """
        tool = self._tools.get(name)
        if tool is None:
            raise NotFoundError("Tool", name)

        if tool.input_model is not None:
            try:
                payload = tool.input_model.model_validate(payload or {})
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid input for tool '{name}': {e}") from e

        self.stats["tool_invocations"] += 1
        output = await _call(tool.handler, payload)

        if tool.output_model is not None and not isinstance(output, tool.output_model):
            try:
                output = tool.output_model.model_validate(output)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid output from tool '{name}': {e}") from e

        return output

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def register_agent(self, agent_id: str) -> None:
        """Record an agent and notify subscribers."""
        self._agents.add(agent_id)
        await self.publish("agent:registered", {"agent_id": agent_id})

    async def unregister_agent(self, agent_id: str) -> None:
        """Forget an agent and notify subscribers."""
        self._agents.discard(agent_id)
        await self.publish("agent:unregistered", {"agent_id": agent_id})

    def get_registered_agents(self) -> list[str]:
        """Agent ids announced to the hub."""
        return sorted(self._agents)

    def get_statistics(self) -> dict[str, Any]:
        """Hub statistics."""
        return {
            **self.stats,
            "subscriptions": sum(len(h) for h in self._subscribers.values()),
            "channels": len(self._channels),
            "tools": len(self._tools),
            "registered_agents": len(self._agents),
        }
