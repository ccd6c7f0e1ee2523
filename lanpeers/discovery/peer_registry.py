"""Tracks discovered peers and fans discovery events out to watchers."""

import asyncio
import logging
import threading
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from lanpeers.discovery.peer_watcher import PeerWatcher, WatcherCallback, as_watcher
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import DiscoveryEvent, PeerRecord

_logger = logging.getLogger(__name__)


class _WatcherChannel:
    """Bounded FIFO of events plus the task that feeds them to one watcher.

    The queue and task are created on first use, on the event loop that
    delivers events, so channels may be registered from any thread.
    """

    def __init__(self, watcher: PeerWatcher, max_queued_events: int) -> None:
        self.watcher = watcher
        self.__max_queued_events = max_queued_events
        self.__queue: Optional[asyncio.Queue[DiscoveryEvent]] = None
        self.__task: Optional[asyncio.Task[None]] = None
        self.__closed = False

    async def put(self, event: DiscoveryEvent) -> None:
        if self.__closed:
            return
        if self.__task is None:
            self.__queue = asyncio.Queue(maxsize=self.__max_queued_events)
            self.__task = asyncio.create_task(
                self.__dispatch(), name=f"watcher-{type(self.watcher).__name__}"
            )
        assert self.__queue is not None
        # Blocks only while this watcher's queue is full.
        await self.__queue.put(event)

    async def join(self) -> None:
        if self.__queue is not None and not self.__closed:
            await self.__queue.join()

    def cancel(self) -> None:
        """Stops dispatching. Safe to call from any thread."""
        self.__closed = True
        task = self.__task
        if task is None or task.done() or _is_current_task(task):
            return
        task.get_loop().call_soon_threadsafe(task.cancel)

    async def stop(self) -> None:
        """Stops dispatching and waits for the dispatch task to finish.

        When called from the watcher's own `notify()`, the dispatch task
        returns once that call completes instead of being cancelled.
        """
        self.__closed = True
        task = self.__task
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    async def __dispatch(self) -> None:
        assert self.__queue is not None
        while not self.__closed:
            event = await self.__queue.get()
            try:
                await self.watcher.notify(event)
            except Exception as e:  # pylint: disable=broad-exception-caught
                _logger.error(
                    "Watcher %r raised while handling %s: %s",
                    self.watcher,
                    event.peer_id,
                    e,
                    exc_info=True,
                )
            finally:
                self.__queue.task_done()


def _is_current_task(task: "asyncio.Task[None]") -> bool:
    try:
        return task is asyncio.current_task()
    except RuntimeError:
        # No event loop running in the calling thread.
        return False


class PeerRegistry:
    """Deduplicates decoded peer records and notifies registered watchers.

    A record is delivered only when its peer is new or its address set
    differs from the one last seen, so periodic re-announcements of an
    unchanged peer produce a single event. A goodbye record (TTL 0) forgets
    the peer without notifying, so its next announcement is reported again.

    The seen-set and watcher list share one lock. Watcher invocation
    happens outside of it, on one dispatch task per watcher.
    """

    def __init__(self, max_queued_events: int = 64) -> None:
        if max_queued_events <= 0:
            raise ValueError(
                f"max_queued_events must be positive, got {max_queued_events}."
            )
        self.__max_queued_events = max_queued_events
        self.__lock = threading.Lock()
        self.__seen: Dict[PeerId, FrozenSet[PeerAddress]] = {}
        self.__channels: List[Tuple[object, _WatcherChannel]] = []
        self.__closed = False

    def register_watcher(
        self, watcher: Union[PeerWatcher, WatcherCallback]
    ) -> None:
        """Adds a watcher. Watchers are notified in registration order.

        Registering the same watcher twice has no effect. May be called from
        any thread, including while events are being delivered.

        Raises:
            RuntimeError: If the registry has been closed.
        """
        channel = _WatcherChannel(as_watcher(watcher), self.__max_queued_events)
        with self.__lock:
            if self.__closed:
                raise RuntimeError("Cannot register a watcher after close.")
            if any(key == watcher for key, _ in self.__channels):
                return
            self.__channels.append((watcher, channel))

    def unregister_watcher(
        self, watcher: Union[PeerWatcher, WatcherCallback]
    ) -> bool:
        """Removes a watcher; pending events for it are dropped.

        Returns:
            True if the watcher was registered.
        """
        with self.__lock:
            for index, (key, channel) in enumerate(self.__channels):
                if key == watcher:
                    del self.__channels[index]
                    break
            else:
                return False
        channel.cancel()
        return True

    @property
    def watcher_count(self) -> int:
        with self.__lock:
            return len(self.__channels)

    def known_peers(self) -> Dict[PeerId, FrozenSet[PeerAddress]]:
        """Returns a snapshot of every peer seen and its last address set."""
        with self.__lock:
            return dict(self.__seen)

    async def deliver(self, record: PeerRecord) -> bool:
        """Records `record` and notifies watchers if it is new information.

        Returns:
            True if an event was handed to the watchers.
        """
        with self.__lock:
            if self.__closed:
                return False

            if record.is_goodbye:
                if self.__seen.pop(record.peer_id, None) is not None:
                    _logger.debug("Peer %s said goodbye.", record.peer_id)
                return False

            if self.__seen.get(record.peer_id) == record.addresses:
                return False
            self.__seen[record.peer_id] = record.addresses
            channels = [channel for _, channel in self.__channels]

        _logger.info(
            "Discovered peer %s with %d address(es).",
            record.peer_id,
            len(record.addresses),
        )
        event = record.to_event()
        for channel in channels:
            await channel.put(event)
        return True

    async def wait_until_idle(self) -> None:
        """Waits until every queued event has been handled by its watcher."""
        with self.__lock:
            channels = [channel for _, channel in self.__channels]
        for channel in channels:
            await channel.join()

    async def close(self) -> None:
        """Stops all dispatch tasks; queued events are dropped. Idempotent."""
        with self.__lock:
            if self.__closed:
                return
            self.__closed = True
            channels = [channel for _, channel in self.__channels]
            self.__channels.clear()
            self.__seen.clear()

        for channel in channels:
            await channel.stop()
