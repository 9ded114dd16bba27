"""Scheduler primitives: latest-wins throttle and a one-shot readiness signal."""
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from garmentprint.types import ReadinessTimeoutError

logger = logging.getLogger(__name__)


class Throttle:
    """
    Timer-gated callback with latest-wins semantics.

    The first call opens a window of `window` seconds; calls made while the
    window is open only replace the pending arguments. When the window closes
    the callback runs once with the most recent arguments. If the callback
    returns a coroutine it is scheduled as a task, and at most one such task
    is in flight at a time.

    Without a running event loop the callback is invoked synchronously and a
    returned coroutine is run to completion.
    """

    def __init__(self, callback: Callable[..., Any], window: float, name: str = ""):
        self.callback = callback
        self.window = window
        self.name = name or getattr(callback, "__name__", "throttle")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: tuple = ()
        self._kwargs: dict = {}
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.fire_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args, **kwargs) -> None:
        self._args = args
        self._kwargs = kwargs
        if self._handle is not None:
            if not self._loop.is_closed():
                return
            # Timer belonged to a finished event loop
            self._handle = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire()
            return
        self._loop = loop
        self._handle = loop.call_later(self.window, self._fire)

    def _fire(self) -> None:
        self._handle = None
        args, kwargs = self._args, self._kwargs
        self._args, self._kwargs = (), {}
        self.fire_count += 1
        logger.debug(f"Throttle {self.name} firing")
        result = self.callback(*args, **kwargs)
        if inspect.iscoroutine(result):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(result)
                return
            previous = self._task
            if previous is not None and not previous.done():
                previous.cancel()
            self._task = asyncio.ensure_future(result)
            self._task.add_done_callback(self._log_failure)

    def _log_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Throttle {self.name} callback failed: {error!r}")

    def cancel(self) -> None:
        """Drop the pending call and cancel any in-flight task."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._args, self._kwargs = (), {}
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Fire a pending call immediately and wait for its task, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()
        task = self._task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)


class ReadinessSignal:
    """
    Awaitable readiness flag.

    `reset()` marks the owner busy and arms a fresh future; `set()` resolves
    it exactly once. Waiters always observe the latest armed future, so a
    reset after `wait()` started keeps them waiting for the new settle.
    """

    def __init__(self, ready: bool = True):
        self._ready = ready
        self._future: Optional[asyncio.Future] = None

    @property
    def is_set(self) -> bool:
        return self._ready

    def reset(self) -> None:
        self._ready = False
        if self._future is not None and self._future.done():
            self._future = None

    def set(self) -> None:
        self._ready = True
        future = self._future
        if future is not None and not future.done() and not future.get_loop().is_closed():
            future.set_result(True)

    async def _wait_ready(self) -> None:
        while not self._ready:
            loop = asyncio.get_running_loop()
            if self._future is None or self._future.done() or self._future.get_loop() is not loop:
                self._future = loop.create_future()
            await asyncio.shield(self._future)

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until ready.

        Raises:
            ReadinessTimeoutError: If `timeout` seconds elapse first
        """
        if self._ready:
            return True
        try:
            await asyncio.wait_for(self._wait_ready(), timeout)
        except asyncio.TimeoutError as e:
            raise ReadinessTimeoutError(f"Not ready after {timeout}s") from e
        return True
