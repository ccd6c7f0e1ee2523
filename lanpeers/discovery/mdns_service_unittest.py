import asyncio

import pytest
import pytest_asyncio

from lanpeers.discovery.errors import ShutdownError, StartupError
from lanpeers.discovery.mdns.query_loop import QueryLoop
from lanpeers.discovery.mdns.record_codec import RecordCodec
from lanpeers.discovery.mdns_config import MdnsConfig
from lanpeers.discovery.mdns_service import MdnsService, ServiceState
from lanpeers.peer.peer_address import PeerAddress
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import PeerRecord
from lanpeers.test.discovery_fixtures import ClosingWatcher, RecordingWatcher
from lanpeers.test.fake_network import FakeMulticastNetwork

FAST_CONFIG = MdnsConfig(query_interval=0.05, announce_interval=0.1)


def _worker_tasks():
    return [
        task
        for task in asyncio.all_tasks()
        if task.get_name().startswith(("mdns-", "watcher-"))
    ]


@pytest.fixture
def network():
    return FakeMulticastNetwork()


@pytest_asyncio.fixture
async def make_service(network):
    services = []

    def _make(address_provider=None, config=FAST_CONFIG, peer_id=None):
        if address_provider is None:
            host = len(services) + 1
            address = PeerAddress("tcp", f"192.168.0.{host}", 4001)
            address_provider = lambda: [address]  # noqa: E731
        service = MdnsService(
            peer_id or PeerId.random(),
            address_provider,
            config=config,
            transport_factory=network.create_transport,
        )
        services.append(service)
        return service

    yield _make
    for service in services:
        try:
            await service.close()
        except ShutdownError:
            pass


class TestConstruction:

    def test_rejects_bad_peer_id(self):
        with pytest.raises(TypeError):
            MdnsService("peer", lambda: [])  # type: ignore[arg-type]

    def test_rejects_non_callable_provider(self):
        with pytest.raises(TypeError):
            MdnsService(PeerId.random(), [])  # type: ignore[arg-type]

    def test_defaults(self):
        service = MdnsService(PeerId.random(), lambda: [])
        assert service.state is ServiceState.CREATED
        assert service.config == MdnsConfig()
        assert service.advertiser is None
        assert service.query_loop is None
        assert service.listener is None


class TestDiscovery:

    @pytest.mark.asyncio
    async def test_discovers_itself(self, make_service):
        service = make_service()
        watcher = RecordingWatcher()
        service.register_watcher(watcher)

        await service.start()
        assert service.state is ServiceState.RUNNING

        await watcher.wait_for_peers([service.peer_id])
        [event] = watcher.events_for(service.peer_id)
        assert event.addresses == frozenset([PeerAddress("tcp", "192.168.0.1", 4001)])

    @pytest.mark.asyncio
    async def test_peers_discover_each_other(self, make_service):
        services = [make_service() for _ in range(4)]
        watchers = []
        for service in services:
            watcher = RecordingWatcher()
            service.register_watcher(watcher)
            watchers.append(watcher)
            await service.start()

        peer_ids = [service.peer_id for service in services]
        for watcher in watchers:
            await watcher.wait_for_peers(peer_ids)
        assert set(services[0].known_peers()) == set(peer_ids)

    @pytest.mark.asyncio
    async def test_reannouncements_reported_once(self, make_service, network):
        service = make_service()
        watcher = RecordingWatcher()
        service.register_watcher(watcher)
        await service.start()

        await watcher.wait_for_peers([service.peer_id])
        await asyncio.sleep(0.35)
        await service.wait_until_idle()

        assert service.advertiser.announcements_sent >= 3
        assert len(watcher.events_for(service.peer_id)) == 1

    @pytest.mark.asyncio
    async def test_address_change_reported(self, make_service):
        addresses = [PeerAddress("tcp", "192.168.0.1", 4001)]
        service = make_service(lambda: list(addresses))
        watcher = RecordingWatcher()
        service.register_watcher(watcher)
        await service.start()
        await watcher.wait_for_peers([service.peer_id])

        addresses.append(PeerAddress("udp", "192.168.0.1", 4001))
        await watcher.wait_for(lambda events: len(events) == 2)
        assert watcher.events[1].addresses == frozenset(addresses)

    @pytest.mark.asyncio
    async def test_query_is_answered(self, make_service, network):
        quiet = make_service(config=FAST_CONFIG.with_overrides(announce_interval=3600.0))
        await quiet.start()

        late = make_service()
        watcher = RecordingWatcher()
        late.register_watcher(watcher)
        await late.start()

        await watcher.wait_for_peers([quiet.peer_id], timeout=2.0)
        assert quiet.advertiser.announcements_sent >= 2

    @pytest.mark.asyncio
    async def test_other_service_tag_not_discovered(self, make_service):
        ours = make_service(config=FAST_CONFIG.with_overrides(service_tag="_ours"))
        theirs = make_service(config=FAST_CONFIG.with_overrides(service_tag="_theirs"))
        watcher = RecordingWatcher()
        ours.register_watcher(watcher)
        await ours.start()
        await theirs.start()

        await watcher.wait_for_peers([ours.peer_id])
        await asyncio.sleep(0.25)
        assert theirs.peer_id not in watcher.peer_ids()

    @pytest.mark.asyncio
    async def test_malformed_packets_do_not_stop_discovery(self, make_service, network):
        service = make_service()
        watcher = RecordingWatcher()
        service.register_watcher(watcher)
        await service.start()

        for junk in (b"", b"\xff" * 40, b"\x00" * 12 + b"trailing"):
            network.inject(junk)
        stranger = PeerId.random()
        network.inject(
            RecordCodec(FAST_CONFIG.service_tag).encode(
                _stranger_record(stranger)
            )
        )

        await watcher.wait_for_peers([stranger, service.peer_id])
        assert service.listener.decode_errors >= 3

    @pytest.mark.asyncio
    async def test_watcher_registered_after_start(self, make_service):
        service = make_service()
        await service.start()
        watcher = RecordingWatcher()
        service.register_watcher(watcher)

        other = make_service()
        await other.start()
        await watcher.wait_for_peers([other.peer_id])

    @pytest.mark.asyncio
    async def test_unregistered_watcher_not_notified(self, make_service):
        service = make_service()
        watcher = RecordingWatcher()
        service.register_watcher(watcher)
        assert service.unregister_watcher(watcher)
        await service.start()

        await asyncio.sleep(0.15)
        assert watcher.events == []

    @pytest.mark.asyncio
    async def test_empty_address_provider(self, make_service):
        service = make_service(lambda: [])
        watcher = RecordingWatcher()
        service.register_watcher(watcher)
        await service.start()

        await watcher.wait_for_peers([service.peer_id])
        assert watcher.events[0].addresses == frozenset()


def _stranger_record(peer_id):
    return PeerRecord(peer_id, frozenset([PeerAddress("tcp", "10.9.9.9", 1)]))


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_close_stops_everything(self, make_service, network):
        service = make_service()
        await service.start()
        [transport] = network.transports
        assert transport.is_open
        assert _worker_tasks()

        await service.close()

        assert service.state is ServiceState.CLOSED
        assert not transport.is_open
        assert transport.close_calls == 1
        assert not service.listener.is_running
        assert not service.advertiser.is_running
        assert not service.query_loop.is_running
        assert _worker_tasks() == []

        sent = len(network.sent)
        await asyncio.sleep(0.2)
        assert len(network.sent) == sent

    @pytest.mark.asyncio
    async def test_close_sends_goodbye(self, make_service, network):
        leaving = make_service()
        staying = make_service()
        await staying.start()
        await leaving.start()
        await asyncio.sleep(0.15)
        assert leaving.peer_id in staying.known_peers()

        leaving_address = network.transports[1].address
        await leaving.close()
        packets = [p for source, p, _ in network.sent if source == leaving_address]
        assert RecordCodec().decode(packets[-1]).is_goodbye

        for _ in range(100):
            if leaving.peer_id not in staying.known_peers():
                break
            await asyncio.sleep(0.01)
        assert leaving.peer_id not in staying.known_peers()

    @pytest.mark.asyncio
    async def test_close_from_watcher(self, make_service, network):
        service = make_service()
        watcher = ClosingWatcher(service.close)
        service.register_watcher(watcher)
        await service.start()

        await asyncio.wait_for(watcher.closed.wait(), 2.0)
        await asyncio.wait_for(watcher.task, 1.0)

        assert service.state is ServiceState.CLOSED
        assert not network.transports[0].is_open
        assert _worker_tasks() == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_service, network):
        service = make_service()
        await service.start()
        await service.close()
        await service.close()
        assert network.transports[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_close_without_start(self, make_service, network):
        service = make_service()
        await service.close()
        assert service.state is ServiceState.CLOSED
        assert network.transports == []
        with pytest.raises(RuntimeError):
            service.register_watcher(RecordingWatcher())

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, make_service):
        service = make_service()
        await service.start()
        with pytest.raises(RuntimeError):
            await service.start()

    @pytest.mark.asyncio
    async def test_restart_after_close_raises(self, make_service):
        service = make_service()
        await service.start()
        await service.close()
        with pytest.raises(RuntimeError):
            await service.start()

    @pytest.mark.asyncio
    async def test_bind_failure(self, network):
        def failing_factory(config):
            transport = network.create_transport(config)
            transport.fail_open = OSError("address in use")
            return transport

        service = MdnsService(
            PeerId.random(), lambda: [], transport_factory=failing_factory
        )
        with pytest.raises(StartupError) as exc_info:
            await service.start()

        assert exc_info.value.details["port"] == 5353
        assert isinstance(exc_info.value.__cause__, OSError)
        assert service.state is ServiceState.CLOSED
        assert network.transports[0].close_calls == 1
        assert _worker_tasks() == []
        await service.close()

    @pytest.mark.asyncio
    async def test_transport_factory_failure(self):
        def broken_factory(config):
            raise RuntimeError("no usable interface")

        service = MdnsService(
            PeerId.random(), lambda: [], transport_factory=broken_factory
        )
        with pytest.raises(StartupError) as exc_info:
            await service.start()

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert service.state is ServiceState.CLOSED
        assert _worker_tasks() == []
        with pytest.raises(RuntimeError):
            service.register_watcher(RecordingWatcher())
        await service.close()

    @pytest.mark.asyncio
    async def test_worker_start_failure_cleans_up(self, make_service, network, mocker):
        mocker.patch.object(QueryLoop, "start", side_effect=RuntimeError("boom"))
        service = make_service()

        with pytest.raises(StartupError):
            await service.start()

        assert service.state is ServiceState.CLOSED
        assert not network.transports[0].is_open
        assert _worker_tasks() == []

    @pytest.mark.asyncio
    async def test_release_failure(self, make_service, network):
        service = make_service()
        await service.start()
        network.transports[0].fail_close = OSError("busy")

        with pytest.raises(ShutdownError):
            await service.close()

        assert service.state is ServiceState.CLOSED
        assert _worker_tasks() == []
        await service.close()

    @pytest.mark.asyncio
    async def test_send_failures_do_not_stop_service(self, make_service, network):
        service = make_service()
        watcher = RecordingWatcher()
        service.register_watcher(watcher)
        await service.start()
        network.transports[0].fail_send = OSError("unreachable")

        await asyncio.sleep(0.15)
        assert service.advertiser.is_running
        assert service.query_loop.is_running

        network.transports[0].fail_send = None
        await watcher.wait_for_peers([service.peer_id])

    @pytest.mark.asyncio
    async def test_context_manager(self, network):
        async with MdnsService(
            PeerId.random(),
            lambda: [],
            config=FAST_CONFIG,
            transport_factory=network.create_transport,
        ) as service:
            assert service.state is ServiceState.RUNNING
        assert service.state is ServiceState.CLOSED
        assert not network.transports[0].is_open
