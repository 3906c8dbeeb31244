"""Unit tests for MessagePublisher (in-memory broker, no real RabbitMQ)."""

from __future__ import annotations

from typing import Any

import aio_pika
import pytest

from resilient_amqp.config import ConnectionSettings, PublisherConfig, RetryConfig
from resilient_amqp.exceptions import MessagingSerializationError, PublishError
from resilient_amqp.rabbitmq.publisher import MessagePublisher

from .fakes import FakeBroker


@pytest.fixture
def publisher(broker: FakeBroker, settings: ConnectionSettings) -> MessagePublisher:
    config = PublisherConfig(
        service_name="billing",
        exchange_name="events",
        queue_name="jobs",
        routing_key="invoice.paid",
        durable=True,
    )
    return MessagePublisher(config, settings, connect=broker.connect)


def _errors(publisher: MessagePublisher) -> list[Any]:
    errors: list[Any] = []
    publisher.on("error", errors.append)
    return errors


@pytest.mark.asyncio
async def test_publish_sends_persistent_message(
    broker: FakeBroker, publisher: MessagePublisher
) -> None:
    assert await publisher.publish({"amount": 10}, {"trace": "t-1"}) is True
    channel = broker.last_connection.channels[0]
    exchange, routing_key, message = channel.published[0]
    assert (exchange, routing_key) == ("events", "invoice.paid")
    assert message.body == b'{"amount": 10}'
    assert message.content_type == "application/json"
    assert message.headers == {"trace": "t-1"}
    assert message.app_id == "billing"
    assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
    assert broker.exchanges["events"].durable is True


@pytest.mark.asyncio
async def test_publish_to_queue_uses_default_exchange(
    broker: FakeBroker, publisher: MessagePublisher
) -> None:
    assert await publisher.publish_to_queue("job-1") is True
    queue = broker.queues["jobs"]
    assert queue.durable is True
    assert [m.body for m in queue.messages] == [b"job-1"]
    assert queue.messages[0].exchange == ""


@pytest.mark.asyncio
async def test_publish_to_queue_without_queue_reports_error(
    broker: FakeBroker, settings: ConnectionSettings
) -> None:
    publisher = MessagePublisher(
        PublisherConfig(exchange_name="events"), settings, connect=broker.connect
    )
    errors = _errors(publisher)
    assert await publisher.publish_to_queue("job") is False
    assert isinstance(errors[0], PublishError)
    assert isinstance(errors[0].__cause__, ValueError)


@pytest.mark.asyncio
async def test_assert_queue_without_queue_raises(
    broker: FakeBroker, settings: ConnectionSettings
) -> None:
    publisher = MessagePublisher(
        PublisherConfig(exchange_name="events"), settings, connect=broker.connect
    )
    with pytest.raises(ValueError, match="queue_name"):
        await publisher.assert_queue()


@pytest.mark.asyncio
async def test_publish_never_raises_when_broker_unreachable() -> None:
    error = ConnectionRefusedError(111, "Connection refused")
    broker = FakeBroker(fail_connects=-1, error=error)
    settings = ConnectionSettings(retry=RetryConfig(max_tries=1, interval=0))
    publisher = MessagePublisher(
        PublisherConfig(exchange_name="events", routing_key="a.b"),
        settings,
        connect=broker.connect,
    )
    errors = _errors(publisher)
    assert await publisher.publish("lost") is False
    assert len(errors) == 1
    assert errors[0].__cause__ is error
    assert errors[0].exchange == "events"
    assert errors[0].routing_key == "a.b"


@pytest.mark.asyncio
async def test_publish_reports_serialization_failure(
    publisher: MessagePublisher,
) -> None:
    errors = _errors(publisher)
    assert await publisher.publish({"x": object()}) is False
    assert isinstance(errors[0].__cause__, MessagingSerializationError)


@pytest.mark.asyncio
async def test_publish_on_closed_channel_recovers_on_next_call(
    broker: FakeBroker, publisher: MessagePublisher
) -> None:
    await publisher.start()
    broker.last_connection.lose()
    recovery = publisher._recovery
    assert recovery is not None
    await recovery
    assert await publisher.publish("after") is True
    assert len(broker.connect_calls) == 2


@pytest.mark.asyncio
async def test_health_check(publisher: MessagePublisher) -> None:
    assert not await publisher.health_check()
    await publisher.start()
    assert await publisher.health_check()
    await publisher.stop()
    assert not await publisher.health_check()
