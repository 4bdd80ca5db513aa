"""Pytest configuration and fixtures for smart-router tests.

This file intentionally keeps the test environment lean (no extra deps).
To support `async def` tests without pytest-asyncio, we provide a minimal
hook that runs coroutine test functions using the stdlib's asyncio.
"""

import asyncio
import inspect
import os
import random

import logfire
import pytest

from smart_router.core.intelligent_router import IntelligentModelRouter
from smart_router.core.routing_state import RoutingState
from smart_router.core.system_context import NetworkQuality, SystemContext
from smart_router.providers.mock import MockProvider
from smart_router.settings import Settings, clear_settings_cache


def pytest_configure(config):
    # Keep telemetry local; tests must never ship events
    logfire.configure(send_to_logfire=False, console=False, inspect_arguments=False)


@pytest.fixture(autouse=True)
def isolate_settings_between_tests(monkeypatch, tmp_path):
    """Isolate environment-driven settings between tests.

    Strips SMART_ROUTER_* variables from the real environment and points
    persisted state at a per-test directory, so tests never read or write
    the user's real state files.
    """
    for key in list(os.environ):
        if key.startswith("SMART_ROUTER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SMART_ROUTER_STATE_DIR", str(tmp_path / "state"))
    clear_settings_cache()

    yield

    clear_settings_cache()


@pytest.fixture
def settings():
    """Fresh settings built from the isolated environment."""
    return Settings()


@pytest.fixture
def system_context():
    """Deterministic daytime system context with unknown network."""
    return SystemContext(network_quality=NetworkQuality.UNKNOWN, hour_of_day=12)


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def routing_state(settings, mock_provider):
    state = RoutingState.from_settings(settings)
    state.registry.register_provider(mock_provider)
    return state


@pytest.fixture
def router(routing_state, settings):
    """Router over the mock provider with a seeded tie-breaker."""
    return IntelligentModelRouter(routing_state, settings=settings, rng=random.Random(42))


def pytest_pyfunc_call(pyfuncitem: pytest.Item) -> bool | None:
    """Enable running `async def` tests without external plugins.

    If the test function is a coroutine function, execute it via asyncio.run.
    Return True to signal that the call was handled, allowing pytest to
    proceed without complaining about missing async plugins.
    """
    test_func = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_func):
        # Build the kwargs that pytest would normally inject (fixtures)
        kwargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
        }
        asyncio.run(test_func(**kwargs))
        return True
    return None
