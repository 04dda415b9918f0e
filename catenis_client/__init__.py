"""
Catenis API Client Library

A Python client library that signs requests to the Catenis API with the
CTN1-HMAC-SHA256 scheme and receives Catenis notifications through a
WebSocket notification channel.

Example usage:
    from catenis_client import CatenisClient, NotificationEvent, NotifyEvent

    client = CatenisClient("drc3XdxNtzoucpw9xiRp", "your-api-access-secret")
    result = client.log_message("My message")

    channel = client.new_ws_notify_channel(NotificationEvent.NEW_MSG_RECEIVED)
    worker = channel.open(lambda event: print(event))
"""

from .client import CatenisClient
from .dispatch import AsyncioDispatcher, ThreadDispatcher
from .exceptions import (
    CatenisClientError,
    ClientError,
    ConfigurationError,
    TransportError,
    TransportTimeout,
    TransportClosed,
    NotificationParseError,
    ApiError
)
from .constants import (
    HEADER_TIMESTAMP,
    HEADER_AUTHORIZATION,
    NOTIFY_WS_PROTOCOL,
    NOTIFY_WS_CHANNEL_OPEN,
    DEFAULT_CONFIG
)
from .notification import (
    NotificationEvent,
    MessageAction,
    DeviceInfo,
    NewMessageReceivedNotify,
    SentMessageReadNotify,
    AssetReceivedNotify,
    AssetConfirmedNotify,
    FinalMessageProgressNotify,
    parse_notification_message
)
from .notify_protocol import (
    ChannelState,
    ChannelEvent,
    OpenEvent,
    NotifyEvent,
    CloseEvent,
    ErrorEvent,
    CloseInfo
)
from .signing import DeviceCredentials, SigningKey, SigningKeyCache, RequestSigner
from .ws_notify import WsNotifyChannel

__version__ = "1.0.0"
__all__ = [
    "CatenisClient",
    "WsNotifyChannel",
    "ThreadDispatcher",
    "AsyncioDispatcher",
    "DeviceCredentials",
    "SigningKey",
    "SigningKeyCache",
    "RequestSigner",
    "CatenisClientError",
    "ClientError",
    "ConfigurationError",
    "TransportError",
    "TransportTimeout",
    "TransportClosed",
    "NotificationParseError",
    "ApiError",
    "HEADER_TIMESTAMP",
    "HEADER_AUTHORIZATION",
    "NOTIFY_WS_PROTOCOL",
    "NOTIFY_WS_CHANNEL_OPEN",
    "DEFAULT_CONFIG",
    "NotificationEvent",
    "MessageAction",
    "DeviceInfo",
    "NewMessageReceivedNotify",
    "SentMessageReadNotify",
    "AssetReceivedNotify",
    "AssetConfirmedNotify",
    "FinalMessageProgressNotify",
    "parse_notification_message",
    "ChannelState",
    "ChannelEvent",
    "OpenEvent",
    "NotifyEvent",
    "CloseEvent",
    "ErrorEvent",
    "CloseInfo"
]
