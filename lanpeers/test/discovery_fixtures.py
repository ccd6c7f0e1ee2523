import asyncio
from typing import Awaitable, Callable, List, Optional

from lanpeers.discovery.peer_watcher import PeerWatcher
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import DiscoveryEvent


class RecordingWatcher(PeerWatcher):
    """Stores every event it is notified of, in arrival order."""

    __test__ = False

    def __init__(self) -> None:
        self.events: List[DiscoveryEvent] = []
        self.__changed = asyncio.Condition()

    async def notify(self, event: DiscoveryEvent) -> None:
        async with self.__changed:
            self.events.append(event)
            self.__changed.notify_all()

    def peer_ids(self) -> List[PeerId]:
        return [event.peer_id for event in self.events]

    def events_for(self, peer_id: PeerId) -> List[DiscoveryEvent]:
        return [event for event in self.events if event.peer_id == peer_id]

    async def wait_for(
        self,
        predicate: Callable[[List[DiscoveryEvent]], bool],
        timeout: float = 5.0,
    ) -> None:
        """Waits until `predicate(self.events)` holds."""

        async def _wait() -> None:
            async with self.__changed:
                await self.__changed.wait_for(lambda: predicate(self.events))

        await asyncio.wait_for(_wait(), timeout)

    async def wait_for_peers(self, peer_ids: List[PeerId], timeout: float = 5.0) -> None:
        wanted = set(peer_ids)
        await self.wait_for(
            lambda events: wanted <= {event.peer_id for event in events}, timeout
        )


class FailingWatcher(PeerWatcher):
    """Raises on every notification."""

    __test__ = False

    def __init__(self) -> None:
        self.calls = 0

    async def notify(self, event: DiscoveryEvent) -> None:
        self.calls += 1
        raise RuntimeError("watcher failure")


class BlockingWatcher(PeerWatcher):
    """Blocks in `notify` until `release` is set."""

    __test__ = False

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.entered = asyncio.Event()
        self.events: List[DiscoveryEvent] = []

    async def notify(self, event: DiscoveryEvent) -> None:
        self.entered.set()
        await self.release.wait()
        self.events.append(event)


class ClosingWatcher(PeerWatcher):
    """Awaits `close()` from inside its first notification.

    `task` is the dispatch task that ran the notification; `closed` is set
    once `close()` has returned.
    """

    __test__ = False

    def __init__(self, close: Callable[[], Awaitable[None]]) -> None:
        self.__close = close
        self.closed = asyncio.Event()
        self.task: Optional["asyncio.Task[object]"] = None
        self.events: List[DiscoveryEvent] = []

    async def notify(self, event: DiscoveryEvent) -> None:
        self.events.append(event)
        if self.task is not None:
            return
        self.task = asyncio.current_task()
        await self.__close()
        self.closed.set()
