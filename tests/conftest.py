import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before any govauth import reads settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("SIWE_DOMAIN", "dao.example.org")
os.environ.setdefault("SIWE_URI", "https://dao.example.org")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402
from eth_account import Account  # noqa: E402
from eth_account.messages import encode_defunct  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from govauth.config import Settings, reset_settings_cache  # noqa: E402
from govauth.service.runtime import Runtime  # noqa: E402
from govauth.storage.memory import MemoryKeyValueStore  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"
# Fixed keys so failures are reproducible
WALLET_KEY = "0x" + "4c" * 32
OTHER_WALLET_KEY = "0x" + "5d" * 32


def sign_text(private_key: str, text: str) -> str:
    signed = Account.sign_message(encode_defunct(text=text), private_key=private_key)
    return "0x" + signed.signature.hex().removeprefix("0x")


class ManualClock:
    """Wall clock stand-in that only moves when told to."""

    def __init__(self, start: float = 1_750_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings():
    """Explicit settings independent of the process environment."""
    return Settings(
        jwt_secret=TEST_SECRET,
        siwe_domain="dao.example.org",
        siwe_uri="https://dao.example.org",
        use_memory_store=True,
        test_mode=True,
    )


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def runtime(settings, kv):
    return Runtime(settings, kv=kv)


@pytest.fixture
def wallet():
    return Account.from_key(WALLET_KEY)


@pytest.fixture
def other_wallet():
    return Account.from_key(OTHER_WALLET_KEY)


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
