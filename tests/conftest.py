import pytest

from warden.watchlist.persistence import WatchlistFile
from warden.watchlist.rate_limiter import NotificationRateLimiter, NotifyPolicy
from warden.watchlist.registry import WatchlistRegistry


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.alerts = []
        self.system_alerts = []

    async def send_alert(self, payload):
        if self.fail:
            raise RuntimeError("channel unavailable")
        self.alerts.append(payload)

    async def send_system_alert(self, title, description, fields=()):
        if self.fail:
            raise RuntimeError("channel unavailable")
        self.system_alerts.append((title, description, list(fields)))


def make_file(path, **overrides) -> WatchlistFile:
    options = dict(max_retries=3, retry_delay=0.001, lock_timeout=0.2, lock_poll_interval=0.01)
    options.update(overrides)
    return WatchlistFile(path, **options)


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "watchlist.json"


@pytest.fixture
def watchlist_file(store_path):
    return make_file(store_path)


@pytest.fixture
def registry(watchlist_file):
    return WatchlistRegistry(watchlist_file)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return NotificationRateLimiter(NotifyPolicy(cooldown_seconds=300, max_per_hour=10), clock=clock)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def file_factory():
    return make_file


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)
