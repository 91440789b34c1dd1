"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chat_engine.application.engine import ChatEngine  # noqa: E402
from chat_engine.core.config.settings import Settings  # noqa: E402
from chat_engine.core.logging.logger import clear_room_context  # noqa: E402
from tests.test_fixtures import (  # noqa: E402
    FakeAIBridge,
    InMemoryDurableStore,
    InMemoryRedis,
    RecordingNotifier,
)


# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio runs in auto mode via pyproject.toml


@pytest.fixture(autouse=True)
def reset_room_context():
    """Context variables must not leak room ids between tests."""
    yield
    clear_room_context()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """
    Settings tuned for fast tests: short flush interval and retry delays.
    """
    return Settings(
        ENVIRONMENT="test",
        LOG_LEVEL="DEBUG",
        CACHE_CB_FAILURE_THRESHOLD=3,
        CACHE_CB_COOLDOWN_SECONDS=30.0,
        CACHE_OPERATION_TIMEOUT=0.5,
        WRITE_QUEUE_MAX_BATCH_SIZE=30,
        WRITE_QUEUE_FLUSH_INTERVAL=0.05,
        WRITE_QUEUE_TRANSACTION_TIMEOUT=0.5,
        WRITE_QUEUE_RETRY_DELAYS=[0.01, 0.02, 0.03],
        DURABLE_CALL_TIMEOUT=0.5,
    )


class TickingClock:
    """Deterministic UTC clock advancing one millisecond per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


# ============================================================================
# In-Memory Collaborators
# ============================================================================


@pytest.fixture
def redis_backend():
    return InMemoryRedis()


@pytest.fixture
def durable_store():
    return InMemoryDurableStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ai_bridge():
    return FakeAIBridge()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
async def engine(redis_backend, durable_store, notifier, ai_bridge, test_settings, clock):
    """
    Fully wired engine with its write-queue worker running.
    """
    chat_engine = ChatEngine.build(
        redis_backend,
        durable_store,
        notifier=notifier,
        ai_bridge=ai_bridge,
        settings=test_settings,
        clock=clock,
    )
    await chat_engine.start()
    yield chat_engine
    await chat_engine.stop()


@pytest.fixture
async def room(engine, durable_store):
    """A room for visitor ``v-1`` in workspace ``ws-1`` served by department ``dept-x``."""
    created = await engine.rooms.create_room("v-1", "ws-1", "session-1", serving_department_id="dept-x")
    durable_store.add_capacity("a-1")
    durable_store.add_capacity("a-2")
    return created
