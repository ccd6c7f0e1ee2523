import threading

import pytest

from lanpeers.discovery.peer_watcher import CallbackWatcher, PeerWatcher, as_watcher
from lanpeers.peer.peer_id import PeerId
from lanpeers.peer.peer_record import DiscoveryEvent
from lanpeers.test.discovery_fixtures import RecordingWatcher


@pytest.fixture
def event():
    return DiscoveryEvent(PeerId.random(), frozenset())


def test_peer_watcher_is_abstract():
    with pytest.raises(TypeError):
        PeerWatcher()  # type: ignore[abstract]


def test_callback_watcher_requires_callable():
    with pytest.raises(TypeError):
        CallbackWatcher("nope")  # type: ignore[arg-type]


def test_as_watcher_passthrough():
    watcher = RecordingWatcher()
    assert as_watcher(watcher) is watcher


def test_as_watcher_wraps_callable():
    def callback(event):
        pass

    wrapped = as_watcher(callback)
    assert isinstance(wrapped, CallbackWatcher)
    assert wrapped.callback is callback


@pytest.mark.asyncio
async def test_coroutine_callback_awaited(event):
    received = []

    async def callback(e):
        received.append(e)

    await CallbackWatcher(callback).notify(event)
    assert received == [event]


@pytest.mark.asyncio
async def test_sync_callback_runs_off_loop_thread(event):
    threads = []

    def callback(e):
        threads.append(threading.get_ident())

    await CallbackWatcher(callback).notify(event)
    assert len(threads) == 1
    assert threads[0] != threading.get_ident()


@pytest.mark.asyncio
async def test_callback_returning_awaitable(event):
    received = []

    async def inner(e):
        received.append(e)

    await CallbackWatcher(lambda e: inner(e)).notify(event)
    assert received == [event]


@pytest.mark.asyncio
async def test_callback_exception_propagates(event, mocker):
    callback = mocker.MagicMock(side_effect=ValueError("boom"))
    with pytest.raises(ValueError):
        await CallbackWatcher(callback).notify(event)
    callback.assert_called_once_with(event)
