"""PeerWatcher ABC, the capability through which discoveries are reported."""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union

from lanpeers.peer.peer_record import DiscoveryEvent


# pylint: disable=R0903 # Single-method capability interface
class PeerWatcher(ABC):
    """Interface for objects notified of discovered peers.

    `notify` is awaited on a dispatch task dedicated to this watcher, so a
    slow watcher delays only its own notifications. Events for one watcher
    arrive in the order they were observed.
    """

    @abstractmethod
    async def notify(self, event: DiscoveryEvent) -> None:
        """Called when a peer is found or its address set changes.

        Args:
            event: The discovered peer's identity and addresses.
        """
        raise NotImplementedError("PeerWatcher.notify must be implemented.")


WatcherCallback = Callable[[DiscoveryEvent], Union[None, Awaitable[Any]]]


class CallbackWatcher(PeerWatcher):
    """Adapts a plain function or coroutine function to `PeerWatcher`.

    Coroutine functions are awaited on the event loop. Regular functions run
    in a worker thread so a blocking callback cannot stall the loop.
    """

    def __init__(self, callback: WatcherCallback) -> None:
        if not callable(callback):
            raise TypeError(
                f"callback must be callable, got {type(callback).__name__}."
            )
        self.__callback = callback

    @property
    def callback(self) -> WatcherCallback:
        return self.__callback

    async def notify(self, event: DiscoveryEvent) -> None:
        if inspect.iscoroutinefunction(self.__callback):
            await self.__callback(event)
            return

        result = await asyncio.to_thread(self.__callback, event)
        if inspect.isawaitable(result):
            await result


def as_watcher(watcher: Union[PeerWatcher, WatcherCallback]) -> PeerWatcher:
    """Returns `watcher` as a `PeerWatcher`, wrapping callables."""
    if isinstance(watcher, PeerWatcher):
        return watcher
    return CallbackWatcher(watcher)
