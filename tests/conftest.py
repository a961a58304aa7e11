"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

from typing import Generator

import httpx
import pytest

from src.core import registry
from src.core.models import DEFAULT_MODEL_TABLE, ModelTable
from src.testing import FakeUpstream, ProxyHarness, ScriptedEventSource
from src.upstream import OpenAICompatibleEventSource, register_upstream_transport

UPSTREAM_BASE = "http://upstream.local/v1"


# =============================================================================
# Registry Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def restore_runtime() -> Generator[None, None, None]:
    """Restore the global model table and event source after each test."""
    previous = (registry.model_table, registry.event_source)
    yield
    registry.set_runtime(*previous)


@pytest.fixture
def clear_transport_registry() -> Generator[None, None, None]:
    """Clear upstream transport registry after test.

    Use this fixture in tests that register fake transports.
    """
    from src.upstream import clear_upstream_transports

    yield
    clear_upstream_transports()


# =============================================================================
# Simulation Fixtures
# =============================================================================


@pytest.fixture
def model_table() -> ModelTable:
    return DEFAULT_MODEL_TABLE


@pytest.fixture
def scripted_source() -> ScriptedEventSource:
    """Event source that replays queued generation events."""
    return ScriptedEventSource()


@pytest.fixture
def proxy(scripted_source: ScriptedEventSource, model_table: ModelTable) -> Generator[ProxyHarness, None, None]:
    """Bridge app wired to the scripted event source."""
    harness = ProxyHarness(scripted_source, model_table)
    yield harness
    harness.close()


@pytest.fixture
def fake_upstream(clear_transport_registry: None) -> FakeUpstream:
    """OpenAI-compatible fake upstream reachable at UPSTREAM_BASE."""
    upstream = FakeUpstream()
    register_upstream_transport(UPSTREAM_BASE, httpx.ASGITransport(app=upstream.app))
    return upstream


@pytest.fixture
def openai_source(fake_upstream: FakeUpstream) -> OpenAICompatibleEventSource:
    return OpenAICompatibleEventSource(UPSTREAM_BASE, "test-key", timeout=5.0)
