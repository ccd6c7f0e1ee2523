"""Defines Stopable and TaskWorker, the base of every background worker."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

_logger = logging.getLogger(__name__)


# pylint: disable=R0903 # Abstract interface for stopable components
class Stopable(ABC):
    """Represents an object that has a defined stopping mechanism."""

    @abstractmethod
    async def stop(self) -> None:
        """Asynchronously stops the object and releases what it holds."""


class TaskWorker(Stopable):
    """Runs `_run()` as an asyncio task until stopped.

    Cancellation is cooperative in two ways: `wait_or_stopped()` lets timer
    waits return as soon as `stop()` is requested, and the task itself is
    cancelled so that blocking awaits such as socket reads unblock at once.
    `stop()` returns only after the task has fully finished, unless it is
    called from within `_run()` itself.
    """

    def __init__(self, name: str) -> None:
        """Initializes the TaskWorker.

        Args:
            name: Task name, used in logs.
        """
        self.__name = name
        self.__task: Optional[asyncio.Task[None]] = None
        self.__stop_event: Optional[asyncio.Event] = None

    @property
    def name(self) -> str:
        return self.__name

    @property
    def is_running(self) -> bool:
        return self.__task is not None and not self.__task.done()

    @property
    def is_stopping(self) -> bool:
        return self.__stop_event is not None and self.__stop_event.is_set()

    def start(self) -> None:
        """Starts the worker task. Must be called on the event loop.

        Raises:
            RuntimeError: If the worker was already started.
        """
        if self.__task is not None:
            raise RuntimeError(f"{self.__name} has already been started.")
        self.__stop_event = asyncio.Event()
        self.__task = asyncio.create_task(self.__run_wrapper(), name=self.__name)

    async def stop(self) -> None:
        """Signals the worker to stop and waits for its task to finish."""
        task = self.__task
        if task is None:
            return
        assert self.__stop_event is not None
        self.__stop_event.set()

        # From inside `_run()` only the stop event is set; the next
        # `wait_or_stopped()` returns True.
        if task is asyncio.current_task():
            return

        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        _logger.debug("%s stopped.", self.__name)

    async def wait_or_stopped(self, timeout: float) -> bool:
        """Sleeps up to `timeout` seconds, returning early on `stop()`.

        Returns:
            True if the worker was asked to stop.
        """
        assert self.__stop_event is not None
        try:
            await asyncio.wait_for(self.__stop_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    @abstractmethod
    async def _run(self) -> None:
        """The worker body. Runs until it returns or is cancelled."""

    async def __run_wrapper(self) -> None:
        try:
            await self._run()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            _logger.error(
                "%s failed unexpectedly: %s", self.__name, e, exc_info=True
            )
