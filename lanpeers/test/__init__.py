# lanpeers - Test Utilities
# Allows "from lanpeers.test import ..." for shared fakes and helpers.

from lanpeers.test.discovery_fixtures import (
    BlockingWatcher,
    FailingWatcher,
    RecordingWatcher,
)
from lanpeers.test.fake_network import (
    FakeMulticastNetwork,
    FakeMulticastTransport,
)

__all__ = [
    "BlockingWatcher",
    "FailingWatcher",
    "RecordingWatcher",
    "FakeMulticastNetwork",
    "FakeMulticastTransport",
]
