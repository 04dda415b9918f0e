"""
Notification messages delivered through the WebSocket notification channel.

The wire format carries no explicit type field: each of the five message
kinds is recognized by the set of fields it contains. A payload must match
exactly one kind; an ambiguous payload is rejected rather than resolved by
precedence.
"""

import datetime
import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .exceptions import NotificationParseError


class NotificationEvent(enum.Enum):
    """Catenis notification events a channel can subscribe to."""

    NEW_MSG_RECEIVED = 'new-msg-received'
    SENT_MSG_READ = 'sent-msg-read'
    ASSET_RECEIVED = 'asset-received'
    ASSET_CONFIRMED = 'asset-confirmed'
    FINAL_MSG_PROGRESS = 'final-msg-progress'

    def __str__(self):
        return self.value


class MessageAction(enum.Enum):
    LOG = 'log'
    SEND = 'send'
    READ = 'read'


def parse_date(value: str) -> datetime.datetime:
    """Parse ISO 8601 date returned by the Catenis API."""
    try:
        return datetime.datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (AttributeError, ValueError) as e:
        raise NotificationParseError(f"Invalid date: {value!r}", e) from e


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    name: Optional[str] = None
    prod_unique_id: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'DeviceInfo':
        return cls(
            device_id=data['deviceId'],
            name=data.get('name'),
            prod_unique_id=data.get('prodUniqueId')
        )


@dataclass(frozen=True)
class MessageProcessError:
    code: int
    message: str


@dataclass(frozen=True)
class MessageProcessSuccess:
    message_id: str
    continuation_token: Optional[str] = None


@dataclass(frozen=True)
class MessageProcessProgressDone:
    bytes_processed: int
    done: bool
    success: bool
    finish_date: datetime.datetime
    error: Optional[MessageProcessError] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'MessageProcessProgressDone':
        error = data.get('error')
        return cls(
            bytes_processed=int(data['bytesProcessed']),
            done=bool(data['done']),
            success=bool(data['success']),
            finish_date=parse_date(data['finishDate']),
            error=MessageProcessError(int(error['code']), error['message']) if error else None
        )


@dataclass(frozen=True)
class NewMessageReceivedNotify:
    message_id: str
    from_device: DeviceInfo
    received_date: datetime.datetime

    REQUIRED_FIELDS = frozenset(['messageId', 'from', 'receivedDate'])

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'NewMessageReceivedNotify':
        return cls(
            message_id=data['messageId'],
            from_device=DeviceInfo.from_json(data['from']),
            received_date=parse_date(data['receivedDate'])
        )


@dataclass(frozen=True)
class SentMessageReadNotify:
    message_id: str
    to_device: DeviceInfo
    read_date: datetime.datetime

    REQUIRED_FIELDS = frozenset(['messageId', 'to', 'readDate'])

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'SentMessageReadNotify':
        return cls(
            message_id=data['messageId'],
            to_device=DeviceInfo.from_json(data['to']),
            read_date=parse_date(data['readDate'])
        )


@dataclass(frozen=True)
class AssetReceivedNotify:
    asset_id: str
    amount: float
    issuer: DeviceInfo
    from_device: DeviceInfo
    received_date: datetime.datetime

    REQUIRED_FIELDS = frozenset(['assetId', 'amount', 'issuer', 'from', 'receivedDate'])

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'AssetReceivedNotify':
        return cls(
            asset_id=data['assetId'],
            amount=float(data['amount']),
            issuer=DeviceInfo.from_json(data['issuer']),
            from_device=DeviceInfo.from_json(data['from']),
            received_date=parse_date(data['receivedDate'])
        )


@dataclass(frozen=True)
class AssetConfirmedNotify:
    asset_id: str
    amount: float
    issuer: DeviceInfo
    from_device: DeviceInfo
    confirmed_date: datetime.datetime

    REQUIRED_FIELDS = frozenset(['assetId', 'amount', 'issuer', 'from', 'confirmedDate'])

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'AssetConfirmedNotify':
        return cls(
            asset_id=data['assetId'],
            amount=float(data['amount']),
            issuer=DeviceInfo.from_json(data['issuer']),
            from_device=DeviceInfo.from_json(data['from']),
            confirmed_date=parse_date(data['confirmedDate'])
        )


@dataclass(frozen=True)
class FinalMessageProgressNotify:
    ephemeral_message_id: str
    action: MessageAction
    progress: MessageProcessProgressDone
    result: Optional[MessageProcessSuccess] = None

    REQUIRED_FIELDS = frozenset(['ephemeralMessageId', 'action', 'progress'])

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'FinalMessageProgressNotify':
        result = data.get('result')
        return cls(
            ephemeral_message_id=data['ephemeralMessageId'],
            action=MessageAction(data['action']),
            progress=MessageProcessProgressDone.from_json(data['progress']),
            result=MessageProcessSuccess(
                result['messageId'],
                result.get('continuationToken')
            ) if result else None
        )


NotificationMessage = Union[
    NewMessageReceivedNotify,
    SentMessageReadNotify,
    AssetReceivedNotify,
    AssetConfirmedNotify,
    FinalMessageProgressNotify,
]

MESSAGE_TYPES = (
    NewMessageReceivedNotify,
    SentMessageReadNotify,
    AssetReceivedNotify,
    AssetConfirmedNotify,
    FinalMessageProgressNotify,
)


def match_message_types(data: Dict[str, Any]):
    """Return the message types whose required fields are all present."""
    fields = {key for key, value in data.items() if value is not None}
    return [msg_type for msg_type in MESSAGE_TYPES if msg_type.REQUIRED_FIELDS <= fields]


def parse_notification_message(text: str) -> NotificationMessage:
    """
    Parse notification message received as a text frame.

    Args:
        text: JSON text

    Returns:
        One of the five notification message objects

    Raises:
        NotificationParseError: If text is not JSON, matches no message kind,
            matches more than one, or carries malformed field values
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise NotificationParseError("Notification message is not valid JSON", e) from e

    if not isinstance(data, dict):
        raise NotificationParseError("Notification message is not a JSON object")

    matches = match_message_types(data)

    if not matches:
        raise NotificationParseError("Unknown notification message")

    if len(matches) > 1:
        names = ', '.join(msg_type.__name__ for msg_type in matches)
        raise NotificationParseError(f"Ambiguous notification message (matches {names})")

    try:
        return matches[0].from_json(data)
    except NotificationParseError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise NotificationParseError(
            f"Inconsistent {matches[0].__name__} notification message", e
        ) from e
