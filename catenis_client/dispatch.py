"""
Dispatch workers delivering notification channel events to the handler.

Each dispatcher owns the user's handler and consumes events from a bounded
queue strictly in arrival order. :class:`ThreadDispatcher` runs on a thread;
:class:`AsyncioDispatcher` runs as a task of an asyncio event loop and also
accepts coroutine handlers.

Events are queued from the transport worker with a timeout, so a slow handler
never keeps the transport worker from seeing owner commands.
"""

import abc
import asyncio
import concurrent.futures
import inspect
import logging
import queue
import threading
import time
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

# Queued after the last event to stop the dispatch worker
_STOP = object()

STOP_RETRY_SECS = 0.1
JOIN_POLL_SECS = 0.1


class Dispatcher(abc.ABC):
    """Scheduling provider for the dispatch worker."""

    def __init__(self, maxsize: int = 1000):
        self._queue = queue.Queue(maxsize)
        self._cancelled = threading.Event()
        self._started = False

    @abc.abstractmethod
    def start(self, handler: Callable):
        pass

    @abc.abstractmethod
    def join(self, timeout: Optional[float] = None):
        pass

    @abc.abstractmethod
    def is_alive(self) -> bool:
        pass

    def _wakeup(self):
        """Tell the worker an item was queued."""

    @property
    def closed(self) -> bool:
        """Whether queued events can no longer reach the handler."""
        return self._cancelled.is_set() or (self._started and not self.is_alive())

    def emit(self, event, timeout: Optional[float] = None) -> bool:
        """
        Queue event; called from the transport worker.

        Returns:
            False if the event could not be queued within ``timeout`` seconds
            or the dispatcher is closed
        """
        if self.closed:
            return False

        try:
            self._queue.put(event, timeout=timeout)
        except queue.Full:
            return False

        self._wakeup()
        return True

    def stop(self):
        """Stop worker once all previously emitted events are handled."""
        while not self.closed:
            try:
                self._queue.put(_STOP, timeout=STOP_RETRY_SECS)
            except queue.Full:
                continue

            self._wakeup()
            return

    def cancel(self):
        """Stop worker before its next handler call; pending events are discarded."""
        self._cancelled.set()

        try:
            self._queue.put_nowait(_STOP)
        except queue.Full:
            # Worker checks the flag when it takes the next item
            LOGGER.debug("Dispatch queue full on cancel")

        self._wakeup()


def _report_handler_failure(event):
    LOGGER.exception("Notification event handler failed on %s", type(event).__name__)


class ThreadDispatcher(Dispatcher):

    def __init__(self, maxsize: int = 1000):
        super().__init__(maxsize)
        self._thread = None

    def start(self, handler: Callable):
        self._thread = threading.Thread(
            target=self._run,
            args=(handler,),
            name='catenis-notify-dispatch',
            daemon=True
        )
        self._thread.start()
        self._started = True

    def _run(self, handler: Callable):
        while True:
            item = self._queue.get()

            if item is _STOP or self._cancelled.is_set():
                break

            try:
                handler(item)
            except Exception:
                _report_handler_failure(item)

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class AsyncioDispatcher(Dispatcher):
    """
    Runs the dispatch worker on an asyncio event loop.

    ``emit``, ``stop`` and ``cancel`` may be called from any thread other than
    the loop's own. Once the loop is closed the dispatcher reports itself
    closed and queued events are never delivered.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = 1000):
        super().__init__(maxsize)
        self._loop = loop
        self._future = None
        self._item_queued = None
        # Set once the worker task is running on the loop
        self._ready = threading.Event()

    def start(self, handler: Callable):
        self._future = asyncio.run_coroutine_threadsafe(self._run(handler), self._loop)
        self._started = True

    async def _run(self, handler: Callable):
        self._item_queued = asyncio.Event()
        self._ready.set()

        while True:
            self._item_queued.clear()

            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                await self._item_queued.wait()
                continue

            if item is _STOP or self._cancelled.is_set():
                break

            try:
                result = handler(item)

                if inspect.isawaitable(result):
                    await result
            except Exception:
                _report_handler_failure(item)

    def _wakeup(self):
        # Items queued before the task runs are picked up when it starts
        if not self._ready.is_set():
            return

        try:
            self._loop.call_soon_threadsafe(self._item_queued.set)
        except RuntimeError as e:
            LOGGER.debug("Dispatch event loop unavailable: %s", e)

    def join(self, timeout: Optional[float] = None):
        deadline = None if timeout is None else time.monotonic() + timeout

        while self.is_alive():
            wait_secs = JOIN_POLL_SECS

            if deadline is not None:
                wait_secs = min(wait_secs, deadline - time.monotonic())

                if wait_secs <= 0:
                    break

            concurrent.futures.wait([self._future], wait_secs)

    async def wait(self):
        """Wait, from the event loop, for the dispatch worker to finish."""
        if self._future is not None:
            await asyncio.wrap_future(self._future)

    def is_alive(self) -> bool:
        return self._future is not None and not self._future.done() and not self._loop.is_closed()
