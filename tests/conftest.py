"""Pytest fixtures for resilient-amqp tests."""

from __future__ import annotations

import pytest

from resilient_amqp.config import ConnectionSettings, RetryConfig

from .fakes import FakeBroker


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def settings() -> ConnectionSettings:
    """Fast, bounded retries so failing tests do not hang."""
    return ConnectionSettings(
        host="broker.test",
        retry=RetryConfig(max_tries=5, interval=1, backoff=2),
    )
