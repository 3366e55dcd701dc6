import pytest

from iot_data.cache.store import CacheStore
from iot_data.config import reset_settings
from tests.factories import FakeClock


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Point both backends at unroutable hosts and reset cached settings."""
    monkeypatch.setenv("FIREBASE_FUNCTIONS_URL", "https://functions.test")
    monkeypatch.setenv("LOCAL_API_URL", "http://sensors.test:8080")
    monkeypatch.setenv("CACHE_STORAGE", "memory")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def tmp_data_dir(tmp_path):
    """Provide a temporary data directory for tests that touch the filesystem."""
    return tmp_path / "data"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> CacheStore:
    """Memory-only cache on virtual time, no background sweep."""
    return CacheStore(namespace="test", ttl=60, max_size=10, auto_cleanup=False, clock=clock)
