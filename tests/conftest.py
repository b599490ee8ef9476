# tests/conftest.py
import os
import sys

import pytest

# Ensure project root is on sys.path so 'import core' and 'import tests' work
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from core.exchange.config import ExchangeConfig, ExchangeType  # noqa: E402
from core.exchange.metrics import set_metrics  # noqa: E402
from core.exchange.registry import BalanceMap, ConstraintStore, ReferenceRegistry, reset_state  # noqa: E402
from core.exchange.signing import NonceSource  # noqa: E402
from tests.fixtures.exchange_fakes import RecordingHttp  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_state():
    """Drop process-wide registries and metrics around every test."""
    reset_state()
    set_metrics(None)
    yield
    reset_state()
    set_metrics(None)


@pytest.fixture
def registry():
    return ReferenceRegistry()


@pytest.fixture
def store(registry):
    return ConstraintStore(registry)


@pytest.fixture
def balances():
    return BalanceMap()


@pytest.fixture
def http():
    return RecordingHttp()


@pytest.fixture
def fixed_clock():
    ticks = iter(range(1_700_000_000_000_000_000, 1_800_000_000_000_000_000, 1000))
    return lambda: next(ticks)


@pytest.fixture
def make_adapter(registry, store, balances, http, fixed_clock):
    """Build an adapter with isolated collaborators.

    Credentials default to a dummy key pair; pass ``api_key=""`` to build one
    without credentials.
    """

    def _make(cls, exchange_type: ExchangeType, api_key="key", api_secret="secret", **overrides):
        config = ExchangeConfig.create(exchange_type.value, exchange_type, **overrides)
        config.credentials.api_key = api_key
        config.credentials.api_secret = api_secret
        return cls(
            config,
            http=http,
            registry=registry,
            constraints=store,
            balances=balances,
            nonce=NonceSource(clock=fixed_clock, divisor=cls.nonce_divisor),
        )

    return _make
