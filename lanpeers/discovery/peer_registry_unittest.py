import asyncio
import logging

import pytest
import pytest_asyncio

from lanpeers.discovery.peer_registry import PeerRegistry
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import DiscoveryEvent, PeerRecord
from lanpeers.test.discovery_fixtures import (
    BlockingWatcher,
    ClosingWatcher,
    FailingWatcher,
    RecordingWatcher,
)

ADDRESS_A = PeerAddress("tcp", "10.0.0.1", 4001)
ADDRESS_B = PeerAddress("tcp", "10.0.0.2", 4001)


def _record(peer_id, *addresses, ttl=120):
    return PeerRecord(peer_id, frozenset(addresses), ttl)


@pytest_asyncio.fixture
async def registry():
    registry = PeerRegistry()
    yield registry
    await registry.close()


def test_rejects_non_positive_queue_bound():
    with pytest.raises(ValueError):
        PeerRegistry(max_queued_events=0)


@pytest.mark.asyncio
async def test_new_peer_notifies(registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    peer_id = PeerId.random()

    assert await registry.deliver(_record(peer_id, ADDRESS_A))
    await registry.wait_until_idle()

    assert watcher.events == [DiscoveryEvent(peer_id, frozenset([ADDRESS_A]))]
    assert registry.known_peers() == {peer_id: frozenset([ADDRESS_A])}


@pytest.mark.asyncio
async def test_repeated_record_suppressed(registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    peer_id = PeerId.random()

    assert await registry.deliver(_record(peer_id, ADDRESS_A))
    assert not await registry.deliver(_record(peer_id, ADDRESS_A))
    assert not await registry.deliver(_record(peer_id, ADDRESS_A, ttl=60))
    await registry.wait_until_idle()

    assert len(watcher.events) == 1


@pytest.mark.asyncio
async def test_address_change_notifies_again(registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    peer_id = PeerId.random()

    await registry.deliver(_record(peer_id, ADDRESS_A))
    await registry.deliver(_record(peer_id, ADDRESS_A, ADDRESS_B))
    await registry.deliver(_record(peer_id, ADDRESS_B, ADDRESS_A))
    await registry.wait_until_idle()

    assert [event.addresses for event in watcher.events] == [
        frozenset([ADDRESS_A]),
        frozenset([ADDRESS_A, ADDRESS_B]),
    ]


@pytest.mark.asyncio
async def test_goodbye_forgets_without_notifying(registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    peer_id = PeerId.random()

    await registry.deliver(_record(peer_id, ADDRESS_A))
    assert not await registry.deliver(_record(peer_id, ADDRESS_A, ttl=0))
    assert peer_id not in registry.known_peers()

    assert await registry.deliver(_record(peer_id, ADDRESS_A))
    await registry.wait_until_idle()
    assert len(watcher.events) == 2


@pytest.mark.asyncio
async def test_goodbye_for_unknown_peer_is_ignored(registry):
    assert not await registry.deliver(_record(PeerId.random(), ttl=0))
    assert registry.known_peers() == {}


@pytest.mark.asyncio
async def test_events_keep_observation_order(registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    peer_ids = [PeerId.random() for _ in range(20)]

    for peer_id in peer_ids:
        await registry.deliver(_record(peer_id, ADDRESS_A))
    await registry.wait_until_idle()

    assert watcher.peer_ids() == peer_ids


@pytest.mark.asyncio
async def test_every_watcher_notified(registry):
    watchers = [RecordingWatcher() for _ in range(3)]
    for watcher in watchers:
        registry.register_watcher(watcher)
    peer_id = PeerId.random()

    await registry.deliver(_record(peer_id))
    await registry.wait_until_idle()

    for watcher in watchers:
        assert watcher.peer_ids() == [peer_id]


@pytest.mark.asyncio
async def test_duplicate_registration_ignored(registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    registry.register_watcher(watcher)
    assert registry.watcher_count == 1

    await registry.deliver(_record(PeerId.random()))
    await registry.wait_until_idle()
    assert len(watcher.events) == 1


@pytest.mark.asyncio
async def test_callable_watchers(registry):
    sync_events = []
    async_events = []

    async def on_async(event):
        async_events.append(event)

    registry.register_watcher(sync_events.append)
    registry.register_watcher(on_async)
    peer_id = PeerId.random()

    await registry.deliver(_record(peer_id))
    await registry.wait_until_idle()

    assert [event.peer_id for event in sync_events] == [peer_id]
    assert [event.peer_id for event in async_events] == [peer_id]


@pytest.mark.asyncio
async def test_failing_watcher_does_not_affect_others(registry, caplog):
    failing = FailingWatcher()
    recording = RecordingWatcher()
    registry.register_watcher(failing)
    registry.register_watcher(recording)

    with caplog.at_level(logging.ERROR):
        await registry.deliver(_record(PeerId.random()))
        await registry.deliver(_record(PeerId.random()))
        await registry.wait_until_idle()

    assert failing.calls == 2
    assert len(recording.events) == 2
    assert "raised while handling" in caplog.text


@pytest.mark.asyncio
async def test_slow_watcher_does_not_block_others(registry):
    blocking = BlockingWatcher()
    recording = RecordingWatcher()
    registry.register_watcher(blocking)
    registry.register_watcher(recording)
    peer_id = PeerId.random()

    await registry.deliver(_record(peer_id))
    await recording.wait_for_peers([peer_id], timeout=2.0)
    await asyncio.wait_for(blocking.entered.wait(), 2.0)
    assert blocking.events == []

    blocking.release.set()
    await registry.wait_until_idle()
    assert [event.peer_id for event in blocking.events] == [peer_id]


@pytest.mark.asyncio
async def test_unregister(registry):
    watcher = RecordingWatcher()
    registry.register_watcher(watcher)
    assert registry.unregister_watcher(watcher)
    assert not registry.unregister_watcher(watcher)
    assert registry.watcher_count == 0

    await registry.deliver(_record(PeerId.random()))
    await registry.wait_until_idle()
    assert watcher.events == []


@pytest.mark.asyncio
async def test_register_from_other_thread(registry):
    watcher = RecordingWatcher()
    await asyncio.to_thread(registry.register_watcher, watcher)
    peer_id = PeerId.random()

    await registry.deliver(_record(peer_id))
    await watcher.wait_for_peers([peer_id], timeout=2.0)


@pytest.mark.asyncio
async def test_close_drops_pending_and_rejects_new_watchers():
    registry = PeerRegistry()
    blocking = BlockingWatcher()
    registry.register_watcher(blocking)

    await registry.deliver(_record(PeerId.random()))
    await registry.deliver(_record(PeerId.random()))
    await asyncio.wait_for(blocking.entered.wait(), 2.0)

    await registry.close()
    await registry.close()

    assert blocking.events == []
    assert registry.known_peers() == {}
    assert registry.watcher_count == 0
    assert not await registry.deliver(_record(PeerId.random()))
    with pytest.raises(RuntimeError):
        registry.register_watcher(RecordingWatcher())


def _dispatch_tasks():
    return [
        task for task in asyncio.all_tasks() if task.get_name().startswith("watcher-")
    ]


@pytest.mark.asyncio
async def test_close_from_inside_watcher():
    registry = PeerRegistry()
    closing = ClosingWatcher(registry.close)
    blocking = BlockingWatcher()
    registry.register_watcher(closing)
    registry.register_watcher(blocking)

    assert await registry.deliver(_record(PeerId.random()))
    await asyncio.wait_for(closing.closed.wait(), 2.0)
    await asyncio.wait_for(closing.task, 1.0)

    assert len(closing.events) == 1
    assert blocking.events == []
    assert registry.watcher_count == 0
    assert _dispatch_tasks() == []


class _UnregisteringWatcher(RecordingWatcher):

    def __init__(self, registry):
        super().__init__()
        self.registry = registry
        self.task = None

    async def notify(self, event):
        await super().notify(event)
        self.task = asyncio.current_task()
        self.registry.unregister_watcher(self)


@pytest.mark.asyncio
async def test_unregister_from_inside_watcher(registry):
    watcher = _UnregisteringWatcher(registry)
    registry.register_watcher(watcher)
    first = PeerId.random()

    await registry.deliver(_record(first))
    await watcher.wait_for_peers([first], timeout=2.0)
    await asyncio.wait_for(watcher.task, 1.0)

    await registry.deliver(_record(PeerId.random()))
    await registry.wait_until_idle()
    assert watcher.peer_ids() == [first]
    assert _dispatch_tasks() == []
