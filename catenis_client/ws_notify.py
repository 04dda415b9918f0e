"""
WebSocket notification channel.

A channel runs two workers: the transport worker (a thread that owns the
WebSocket connection) and the dispatch worker (a thread or asyncio task that
owns the event handler). The owner controls the channel only through a
command queue; events flow to the handler only through the dispatch queue.
"""

import asyncio
import logging
import queue
import threading
from typing import Callable, Optional, Union

from .constants import (
    HEADER_AUTHORIZATION,
    HEADER_TIMESTAMP,
    NOTIFY_WS_ENDPOINT,
    NOTIFY_WS_PROTOCOL
)
from .dispatch import AsyncioDispatcher, Dispatcher, ThreadDispatcher
from .exceptions import ClientError, TransportClosed, TransportError, TransportTimeout
from .notification import NotificationEvent
from .notify_protocol import ChannelState, Command, FrameOutcome, NotifyChannelProtocol
from .transport import Transport, connect_websocket

LOGGER = logging.getLogger(__name__)

COMMAND_QUEUE_SIZE = 16


class _TransportWorker:
    """Owns the connection; alternates bounded reads with command checks."""

    def __init__(self, protocol: NotifyChannelProtocol, transport: Transport,
                 dispatcher: Dispatcher, commands: queue.Queue, auth_message: str,
                 poll_interval: float):
        self.protocol = protocol
        self.transport = transport
        self.dispatcher = dispatcher
        self.commands = commands
        self.auth_message = auth_message
        self.poll_interval = poll_interval
        self.dropped = False

    def run(self):
        try:
            self._run()
        finally:
            # Always cascade to the dispatch worker
            if self.dropped:
                self.dispatcher.cancel()
            else:
                self.dispatcher.stop()
            LOGGER.info("Notification channel terminated (state: %s)", self.protocol.state.value)

    def _run(self):
        try:
            self.transport.send_text(self.auth_message)
        except TransportError as e:
            self._apply(self.protocol.authentication_failed(e))
            return

        if self._process_command():
            return

        while True:
            try:
                frame = self.transport.read_frame(self.poll_interval)
            except TransportTimeout:
                frame = None
            except TransportClosed:
                self._apply(self.protocol.transport_closed())
                return
            except TransportError as e:
                self._apply(self.protocol.transport_error(e))
                return

            if frame is not None:
                LOGGER.debug("Notification channel frame received: %s", type(frame).__name__)

                if self._apply(self.protocol.receive_frame(frame)):
                    return

            if self.dispatcher.closed:
                self._dispatcher_gone()
                return

            if self._process_command():
                return

    def _apply(self, outcome: FrameOutcome) -> bool:
        """Carry out protocol outcome; returns whether to terminate."""
        if outcome.close is not None:
            try:
                self.transport.close(outcome.close.code, outcome.close.reason)
            except TransportClosed:
                LOGGER.debug("WebSocket connection already closed")
            except TransportError as e:
                LOGGER.warning("Failed to close WebSocket connection: %s", e)

        for event in outcome.events:
            if not self._emit(event):
                return True

        return outcome.terminate

    def _emit(self, event) -> bool:
        """
        Queue event for the handler, checking owner commands while the queue
        is full. Returns False if the channel terminated meanwhile.
        """
        while not self.dispatcher.emit(event, self.poll_interval):
            if self.dispatcher.closed:
                self._dispatcher_gone()
                return False

            if self._process_command():
                return False

        return True

    def _drop(self):
        self.dropped = True
        self.protocol.dropped()
        self.transport.abort()

    def _dispatcher_gone(self):
        LOGGER.warning("Notification event dispatcher gone; dropping channel")
        self._drop()

    def _process_command(self) -> bool:
        """Handle at most one pending owner command; returns whether to terminate."""
        try:
            command = self.commands.get_nowait()
        except queue.Empty:
            return False

        if command is Command.DROP:
            LOGGER.info("Dropping notification channel")
            self._drop()
            return True

        if self.protocol.terminated:
            # Still delivering the terminal events
            LOGGER.debug("Notification channel already terminated; ignoring close command")
            return False

        LOGGER.info("Closing notification channel")
        close_info = self.protocol.close_requested()

        try:
            self.transport.close(close_info.code, close_info.reason)
        except TransportClosed:
            return self._apply(self.protocol.transport_closed())
        except TransportError as e:
            return self._apply(self.protocol.close_failed(e))

        return False


class WsNotifyChannel:
    """
    Catenis WebSocket notification channel.

    Example:
        channel = client.new_ws_notify_channel(NotificationEvent.NEW_MSG_RECEIVED)
        worker = channel.open(lambda event: print(event))
        ...
        channel.close()
        worker.join()
    """

    def __init__(self, client, event: Union[NotificationEvent, str],
                 connector: Optional[Callable[[str, str, float], Transport]] = None,
                 dispatcher: Optional[Dispatcher] = None):
        """
        Initialize notification channel.

        Args:
            client: CatenisClient used to build and sign the authentication data
            event: Notification event to subscribe to
            connector: Callable opening the transport (url, subprotocol, timeout)
            dispatcher: Dispatch worker provider; a ThreadDispatcher by default
        """
        self.client = client
        self.event = event
        self._connector = connector or connect_websocket
        self._dispatcher = dispatcher
        self._protocol = NotifyChannelProtocol()
        self._commands = queue.Queue(COMMAND_QUEUE_SIZE)
        self._worker = None

    @property
    def state(self) -> ChannelState:
        return self._protocol.state

    @property
    def dispatcher(self) -> Optional[Dispatcher]:
        return self._dispatcher

    def open(self, handler: Callable) -> threading.Thread:
        """
        Open channel and start delivering events to ``handler``.

        Args:
            handler: Called once per channel event, in arrival order

        Returns:
            The transport worker thread

        Raises:
            ClientError: If the channel was already opened or the
                authentication data cannot be produced
            TransportError: If the WebSocket connection cannot be established
        """
        if self._protocol.state is not ChannelState.IDLE:
            raise ClientError(f"Notification channel cannot be opened (state: {self.state.value})")

        # Only used to get the URL and to generate the authentication data;
        #  never sent as an HTTP request
        auth_req = self.client._get_ws_request(NOTIFY_WS_ENDPOINT, {'event_name': str(self.event)})
        self.client.sign_request(auth_req)

        self._protocol.start_connecting()
        LOGGER.info("Opening notification channel for %s", self.event)

        try:
            transport = self._connector(auth_req.url, NOTIFY_WS_PROTOCOL, self.client.config['timeout'])
        except TransportError as e:
            self._protocol.connection_failed(e)
            raise

        auth_message = self._protocol.authentication_message(
            auth_req.headers[HEADER_TIMESTAMP],
            auth_req.headers[HEADER_AUTHORIZATION]
        )

        if self._dispatcher is None:
            self._dispatcher = ThreadDispatcher(self.client.config['event_queue_size'])

        self._dispatcher.start(handler)

        worker = _TransportWorker(
            self._protocol,
            transport,
            self._dispatcher,
            self._commands,
            auth_message,
            self.client.config['poll_interval']
        )
        self._worker = threading.Thread(target=worker.run, name='catenis-notify-transport', daemon=True)
        self._worker.start()

        return self._worker

    async def open_async(self, handler: Callable) -> threading.Thread:
        """
        Open channel from an asyncio event loop.

        Events are dispatched as a task of the running loop; ``handler`` may be
        a plain function or a coroutine function.
        """
        loop = asyncio.get_running_loop()

        if self._dispatcher is None:
            self._dispatcher = AsyncioDispatcher(loop, self.client.config['event_queue_size'])

        return await loop.run_in_executor(None, self.open, handler)

    def close(self):
        """Ask the transport worker to close the WebSocket connection."""
        self._send_command(Command.CLOSE)

    def drop(self):
        """Stop both workers right away, without a closing handshake."""
        if self._worker is None and self._protocol.state is ChannelState.IDLE:
            self._protocol.dropped()
            return

        if self._protocol.terminated:
            # Events the handler has not taken yet are discarded
            if self._dispatcher is not None and self._dispatcher.is_alive():
                self._dispatcher.cancel()
            return

        self._send_command(Command.DROP)

    def _send_command(self, command: Command):
        # Queued even while open() is still connecting; the transport worker
        #  takes it right after sending the authentication message
        if self._protocol.terminated:
            LOGGER.debug("Notification channel not running; ignoring %s command", command.value)
            return

        try:
            self._commands.put_nowait(command)
        except queue.Full:
            LOGGER.warning("Notification channel command queue full; ignoring %s command", command.value)

    def join(self, timeout: Optional[float] = None):
        """Wait for both workers to finish."""
        if self._worker is not None:
            self._worker.join(timeout)

        if self._dispatcher is not None:
            self._dispatcher.join(timeout)

    def is_alive(self) -> bool:
        return (self._worker is not None and self._worker.is_alive()) or \
            (self._dispatcher is not None and self._dispatcher.is_alive())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.drop()

    def __del__(self):
        worker = getattr(self, '_worker', None)

        if worker is not None and worker.is_alive():
            self.drop()
