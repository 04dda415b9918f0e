"""
WebSocket notification channel protocol.

:class:`NotifyChannelProtocol` is a state machine without any I/O: it turns
received frames and transport conditions into channel events plus the actions
the transport worker must carry out (send a close frame, terminate). The same
core drives the channel whatever the scheduling model of the event handler.
"""

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .constants import (
    BINARY_REASON_LIMIT,
    CLOSE_NORMAL,
    CLOSE_UNEXPECTED_MESSAGE,
    CLOSE_UNSUPPORTED_DATA,
    HEADER_AUTHORIZATION,
    HEADER_TIMESTAMP,
    NOTIFY_WS_CHANNEL_OPEN
)
from .exceptions import ClientError, NotificationParseError
from .notification import parse_notification_message

LOGGER = logging.getLogger(__name__)

# Close frame payload is limited to 125 bytes, 2 of which hold the code
MAX_CLOSE_REASON_BYTES = 123


class ChannelState(enum.Enum):
    IDLE = 'idle'
    CONNECTING = 'connecting'
    AUTHENTICATING = 'authenticating'
    OPEN = 'open'
    CLOSING = 'closing'
    CLOSED = 'closed'
    FAILED = 'failed'


TERMINAL_STATES = frozenset([ChannelState.CLOSED, ChannelState.FAILED])


class Command(enum.Enum):
    """Commands sent by the channel owner to the transport worker."""

    CLOSE = 'close'
    DROP = 'drop'


# Frames

@dataclass(frozen=True)
class CloseInfo:
    code: int
    reason: str = ''


@dataclass(frozen=True)
class TextFrame:
    text: str


@dataclass(frozen=True)
class BinaryFrame:
    data: bytes


@dataclass(frozen=True)
class PingFrame:
    data: bytes = b''


@dataclass(frozen=True)
class PongFrame:
    data: bytes = b''


@dataclass(frozen=True)
class CloseFrame:
    close_info: Optional[CloseInfo] = None


# Events delivered to the notification event handler

class ChannelEvent:
    """Base class of notification channel events."""

    __slots__ = ()


@dataclass(frozen=True)
class OpenEvent(ChannelEvent):
    """Channel authenticated and ready to deliver notifications."""


@dataclass(frozen=True)
class NotifyEvent(ChannelEvent):
    message: Any


@dataclass(frozen=True)
class CloseEvent(ChannelEvent):
    close_info: Optional[CloseInfo] = None


@dataclass(frozen=True)
class ErrorEvent(ChannelEvent):
    error: Exception


@dataclass
class FrameOutcome:
    """What the transport worker must do after a protocol step."""

    events: List[ChannelEvent] = field(default_factory=list)
    close: Optional[CloseInfo] = None
    terminate: bool = False


def format_bytes_limit(data: bytes, limit: int) -> str:
    """Format bytes as a list of integers, truncated after ``limit`` items."""
    items = ', '.join(str(b) for b in data[:limit])

    if len(data) > limit:
        items += ', ...'

    return f"[{items}]"


def truncate_close_reason(reason: str) -> str:
    encoded = reason.encode('utf-8')

    if len(encoded) <= MAX_CLOSE_REASON_BYTES:
        return reason

    return encoded[:MAX_CLOSE_REASON_BYTES - 3].decode('utf-8', errors='ignore') + '...'


class NotifyChannelProtocol:
    """
    Notification channel state machine.

    Idle -> Connecting -> Authenticating -> Open -> Closing -> Closed

    Failed is terminal like Closed: the channel stays Failed after its
    connection goes away, so the owner can tell the two endings apart.
    Drop moves any other state to Closed.
    """

    def __init__(self):
        self.state = ChannelState.IDLE

    @property
    def terminated(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, state: ChannelState):
        if state is not self.state:
            LOGGER.debug("Notification channel state: %s -> %s", self.state.value, state.value)
            self.state = state

    def _fail(self, error: Exception) -> FrameOutcome:
        self._transition(ChannelState.FAILED)
        return FrameOutcome(events=[ErrorEvent(error)], terminate=True)

    # Setup

    def start_connecting(self):
        if self.state is not ChannelState.IDLE:
            raise ClientError(f"Notification channel cannot be opened (state: {self.state.value})")
        self._transition(ChannelState.CONNECTING)

    def connection_failed(self, error: Exception):
        LOGGER.info("Notification channel connection failed: %s", error)
        self._transition(ChannelState.FAILED)

    def authentication_message(self, timestamp: str, authorization: str) -> str:
        """Build the authentication frame sent right after connecting."""
        self._transition(ChannelState.AUTHENTICATING)
        return json.dumps({
            HEADER_TIMESTAMP: timestamp,
            HEADER_AUTHORIZATION: authorization
        })

    def authentication_failed(self, error: Exception) -> FrameOutcome:
        return self._fail(ClientError(
            "Failed to send WebSocket notification channel authentication message", error
        ))

    # Frames

    def receive_frame(self, frame) -> FrameOutcome:
        if isinstance(frame, TextFrame):
            return self._receive_text(frame.text)

        if isinstance(frame, BinaryFrame):
            LOGGER.warning("Unexpected binary message on notification channel; closing it")
            self._transition(ChannelState.FAILED)
            return FrameOutcome(
                events=[ErrorEvent(ClientError("Unexpected binary message received"))],
                close=CloseInfo(CLOSE_UNSUPPORTED_DATA, truncate_close_reason(
                    f"Unexpected binary message received: "
                    f"{format_bytes_limit(frame.data, BINARY_REASON_LIMIT)}"
                )),
                terminate=True
            )

        if isinstance(frame, CloseFrame):
            LOGGER.info("Notification channel close frame received: %s", frame.close_info)
            self._transition(ChannelState.CLOSING)
            return FrameOutcome(events=[CloseEvent(frame.close_info)])

        # Ping/pong
        return FrameOutcome()

    def _receive_text(self, text: str) -> FrameOutcome:
        if text == NOTIFY_WS_CHANNEL_OPEN:
            if self.state is ChannelState.AUTHENTICATING:
                LOGGER.info("Notification channel open")
                self._transition(ChannelState.OPEN)
            return FrameOutcome(events=[OpenEvent()])

        try:
            message = parse_notification_message(text)
        except NotificationParseError as e:
            LOGGER.warning("Unexpected notification message; closing channel: %s", e)
            self._transition(ChannelState.FAILED)
            return FrameOutcome(
                events=[ErrorEvent(NotificationParseError(
                    f"Unexpected notification message received: {text}", e
                ))],
                close=CloseInfo(CLOSE_UNEXPECTED_MESSAGE, truncate_close_reason(
                    f"Unexpected notification message received: {text}"
                )),
                terminate=True
            )

        events = []

        if self.state is ChannelState.AUTHENTICATING:
            # Notification ahead of the ready message; the channel is open anyway
            self._transition(ChannelState.OPEN)
            events.append(OpenEvent())

        events.append(NotifyEvent(message))

        return FrameOutcome(events=events)

    # Transport conditions

    def transport_closed(self) -> FrameOutcome:
        if self.state is not ChannelState.FAILED:
            self._transition(ChannelState.CLOSED)
        return FrameOutcome(terminate=True)

    def transport_error(self, error: Exception) -> FrameOutcome:
        return self._fail(ClientError("WebSocket notification channel error", error))

    # Owner commands

    def close_requested(self) -> CloseInfo:
        self._transition(ChannelState.CLOSING)
        return CloseInfo(CLOSE_NORMAL)

    def close_failed(self, error: Exception) -> FrameOutcome:
        return self._fail(ClientError("Failed to close WebSocket connection", error))

    def dropped(self):
        if self.state is not ChannelState.FAILED:
            self._transition(ChannelState.CLOSED)
