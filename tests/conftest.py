import asyncio
import inspect
import os
import sys
from pathlib import Path

# Set before any import that might build the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# Empty REDIS_URL selects the in-process cache
os.environ.setdefault("REDIS_URL", "")
# Cheap argon2 parameters keep the suite fast
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")
os.environ.setdefault("NOTIFY_BACKOFF_SECONDS", "0")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from papacatzzi.config import Settings  # noqa: E402
from papacatzzi.service.auth import AuthService  # noqa: E402
from papacatzzi.service.notifications import NotificationDispatcher  # noqa: E402
from papacatzzi.service.passwords import CredentialHasher  # noqa: E402
from papacatzzi.service.runtime import reset_runtime_for_tests  # noqa: E402
from papacatzzi.storage.memory import MemoryStore  # noqa: E402
from papacatzzi.storage.memory_cache import MemoryCache  # noqa: E402

TEST_JWT_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class RecordingSender:
    """Notification sender that keeps every message in memory."""

    def __init__(self, fail_times: int = 0, *, raise_error: bool = False):
        self.codes: list[tuple[str, str]] = []
        self.templated: list[tuple[str, str, str, dict]] = []
        self.fail_times = fail_times
        self.raise_error = raise_error
        self.attempts = 0

    def _should_fail(self) -> bool:
        self.attempts += 1
        if self.attempts <= self.fail_times:
            if self.raise_error:
                raise ConnectionError("smtp unavailable")
            return True
        return False

    def send_verification_code(self, recipient: str, code: str) -> bool:
        if self._should_fail():
            return False
        self.codes.append((recipient, code))
        return True

    def send_templated(self, recipient: str, subject: str, template_key: str, data: dict) -> bool:
        if self._should_fail():
            return False
        self.templated.append((recipient, subject, template_key, data))
        return True

    def last_code(self, recipient: str) -> str:
        return [code for to, code in self.codes if to == recipient][-1]


class FakeClock:
    """Manually advanced clock for TTL and expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        test_mode=True,
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60 * 24 * 7,
        reset_token_ttl_minutes=60,
        argon2_time_cost=1,
        argon2_memory_cost=1024,
        argon2_parallelism=1,
        notify_max_retries=2,
        notify_backoff_seconds=0,
        notify_timeout_seconds=2,
        app_base_url="https://app.example.com",
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def hasher(settings):
    return CredentialHasher.from_settings(settings)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def dispatcher(sender, settings):
    return NotificationDispatcher.from_settings(sender, settings)


@pytest.fixture
def auth_service(settings, memory_store, memory_cache, dispatcher, hasher):
    return AuthService(settings, memory_store, memory_cache, dispatcher, hasher=hasher)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
