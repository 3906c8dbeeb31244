"""Tests for ChannelManager."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from aio_pika.exceptions import ChannelClosed

from resilient_amqp.config import ConnectionSettings
from resilient_amqp.exceptions import ChannelProtocolError, NoChannelError
from resilient_amqp.rabbitmq.channel import HEALTH_CHECK_EXCHANGE, ChannelManager
from resilient_amqp.rabbitmq.connection import ConnectionManager

from .fakes import FakeBroker, FakeChannel


@pytest.fixture
def channels(broker: FakeBroker, settings: ConnectionSettings) -> ChannelManager:
    return ChannelManager(ConnectionManager(settings, connect=broker.connect))


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_channel(
    broker: FakeBroker, channels: ChannelManager
) -> None:
    results = await asyncio.gather(*(channels.get_channel() for _ in range(5)))
    assert all(c is results[0] for c in results)
    assert len(broker.last_connection.channels) == 1


@pytest.mark.asyncio
async def test_no_channel_when_creation_not_allowed(channels: ChannelManager) -> None:
    with pytest.raises(NoChannelError):
        await channels.get_channel(create_if_missing=False)


@pytest.mark.asyncio
async def test_new_channel_is_health_checked(
    broker: FakeBroker, channels: ChannelManager
) -> None:
    del broker.exchanges[HEALTH_CHECK_EXCHANGE]
    with pytest.raises(ChannelProtocolError) as exc_info:
        await channels.get_channel()
    assert isinstance(exc_info.value.__cause__, ChannelClosed)
    assert channels.current_channel is None


@pytest.mark.asyncio
async def test_check_channel_without_channel(channels: ChannelManager) -> None:
    with pytest.raises(NoChannelError):
        await channels.check_channel()


@pytest.mark.asyncio
async def test_error_close_emits_disconnect_and_recreates_lazily(
    channels: ChannelManager,
) -> None:
    errors: list[BaseException] = []
    channels.on("disconnect", errors.append)
    first = await channels.get_channel()
    first.lose(ChannelClosed(406, "PRECONDITION_FAILED"))
    assert len(errors) == 1
    assert channels.current_channel is None
    second = await channels.get_channel()
    assert second is not first


@pytest.mark.asyncio
async def test_close_channel_is_quiet_and_idempotent(
    channels: ChannelManager,
) -> None:
    errors: list[BaseException] = []
    channels.on("disconnect", errors.append)
    channel = await channels.get_channel()
    assert await channels.health_check()
    await channels.close_channel()
    await channels.close_channel()
    assert channel.is_closed
    assert errors == []
    assert not await channels.health_check()


@pytest.mark.asyncio
async def test_channel_failing_health_check_is_closed(
    broker: FakeBroker, channels: ChannelManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        FakeChannel, "get_exchange", AsyncMock(side_effect=TimeoutError("no reply"))
    )
    with pytest.raises(ChannelProtocolError):
        await channels.get_channel()
    opened = broker.last_connection.channels[0]
    assert opened.is_closed
    assert channels.current_channel is None
