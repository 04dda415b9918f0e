"""
WebSocket transport used by the notification channel.

The channel only talks to :class:`Transport`; :class:`WebSocketTransport`
implements it on top of the ``websockets`` synchronous client.
"""

import abc
import logging
import socket

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State
from websockets.sync.client import connect

from .exceptions import TransportClosed, TransportError, TransportTimeout
from .notify_protocol import BinaryFrame, CloseFrame, CloseInfo, TextFrame

LOGGER = logging.getLogger(__name__)


class Transport(abc.ABC):
    """Persistent connection owned by the transport worker."""

    @abc.abstractmethod
    def send_text(self, text: str):
        """
        Send text frame.

        Raises:
            TransportClosed: If connection is already closed
            TransportError: On any other failure
        """

    @abc.abstractmethod
    def read_frame(self, timeout: float):
        """
        Read next frame, waiting at most ``timeout`` seconds.

        Returns:
            TextFrame, BinaryFrame, PingFrame, PongFrame or CloseFrame

        Raises:
            TransportTimeout: If no frame arrived in time
            TransportClosed: Once the connection is closed
            TransportError: On any other failure
        """

    @abc.abstractmethod
    def close(self, code: int, reason: str = ''):
        """
        Start closing handshake.

        Raises:
            TransportClosed: If connection is already closed
            TransportError: On any other failure
        """

    @abc.abstractmethod
    def abort(self):
        """Drop connection without a closing handshake."""


class WebSocketTransport(Transport):
    """
    Transport over a ``websockets`` client connection.

    Control frames are answered by ``websockets`` itself and never surface.
    The peer's close frame is reported once as a CloseFrame; later reads
    raise TransportClosed.
    """

    def __init__(self, connection):
        self.connection = connection
        self._close_reported = False

    def send_text(self, text: str):
        try:
            self.connection.send(text)
        except ConnectionClosed as e:
            raise TransportClosed("WebSocket connection closed", e) from e
        except (OSError, WebSocketException) as e:
            raise TransportError("Failed to send WebSocket message", e) from e

    def read_frame(self, timeout: float):
        try:
            message = self.connection.recv(timeout=timeout)
        except TimeoutError as e:
            raise TransportTimeout("No WebSocket message received", e) from e
        except ConnectionClosed as e:
            if self._close_reported:
                raise TransportClosed("WebSocket connection closed", e) from e

            self._close_reported = True

            if e.rcvd is None:
                raise TransportError("WebSocket connection closed unexpectedly", e) from e

            return CloseFrame(CloseInfo(e.rcvd.code, e.rcvd.reason))
        except (OSError, WebSocketException) as e:
            raise TransportError("Failed to receive WebSocket message", e) from e

        if isinstance(message, str):
            return TextFrame(message)

        return BinaryFrame(bytes(message))

    def close(self, code: int, reason: str = ''):
        if self.connection.protocol.state is not State.OPEN:
            raise TransportClosed("WebSocket connection already closed")

        try:
            self.connection.close(code, reason)
        except ConnectionClosed as e:
            raise TransportClosed("WebSocket connection closed", e) from e
        except (OSError, WebSocketException) as e:
            raise TransportError("Failed to close WebSocket connection", e) from e

    def abort(self):
        sock = self.connection.socket

        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            LOGGER.debug("WebSocket socket shutdown failed: %s", e)

        sock.close()


def connect_websocket(url: str, subprotocol: str, timeout: float) -> WebSocketTransport:
    """
    Open WebSocket connection.

    Args:
        url: ``ws://`` or ``wss://`` URL
        subprotocol: Subprotocol advertised during the upgrade
        timeout: Connection (and opening handshake) timeout in seconds

    Raises:
        TransportError: If the connection cannot be established
    """
    try:
        connection = connect(url, subprotocols=[subprotocol], open_timeout=timeout)
    except (OSError, WebSocketException) as e:
        raise TransportError("Failed to establish WebSocket connection", e) from e

    LOGGER.debug("WebSocket connection established to %s", url)

    return WebSocketTransport(connection)
