"""Integration tests against a real broker (require Docker and testcontainers)."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any

import pytest

pytest.importorskip("testcontainers")
pytest.importorskip("pika")  # required by testcontainers.rabbitmq

from testcontainers.rabbitmq import RabbitMqContainer

from resilient_amqp import (
    AckMode,
    ConnectionSettings,
    ConsumerConfig,
    MessageConsumer,
    MessagePublisher,
    PublisherConfig,
    RetryConfig,
)

pytestmark = pytest.mark.integration


def _settings_from_params(params: object) -> ConnectionSettings:
    """Build settings from pika connection params (``get_connection_params()``)."""
    creds = getattr(params, "credentials", None)
    return ConnectionSettings(
        host=getattr(params, "host", "localhost"),
        port=getattr(params, "port", 5672),
        username=getattr(creds, "username", "guest"),
        password=getattr(creds, "password", "guest"),
        retry=RetryConfig(max_tries=5, interval=100, backoff=2),
    )


@pytest.fixture(scope="module")
def rabbitmq_settings() -> Iterator[ConnectionSettings]:
    with RabbitMqContainer("rabbitmq:3-management") as rabbit:
        yield _settings_from_params(rabbit.get_connection_params())


@pytest.mark.asyncio
async def test_publish_consume_with_headers(
    rabbitmq_settings: ConnectionSettings,
) -> None:
    consumer = MessageConsumer(
        ConsumerConfig(
            service_name="it-consumer",
            queue_name="it.orders",
            exchange_name="it.events",
            routing_key="orders.*",
        ),
        rabbitmq_settings,
    )
    publisher = MessagePublisher(
        PublisherConfig(exchange_name="it.events", routing_key="orders.created"),
        rabbitmq_settings,
    )
    received: asyncio.Future[tuple[Any, Any]] = (
        asyncio.get_running_loop().create_future()
    )
    consumer.on(
        "message", lambda payload, delivery: received.set_result((payload, delivery))
    )
    try:
        await consumer.listen()
        assert await publisher.publish("msg", {"a": 1}) is True
        payload, delivery = await asyncio.wait_for(received, 5)
        assert payload == "msg"
        assert delivery.headers["a"] == 1
    finally:
        await publisher.stop()
        await consumer.stop()


@pytest.mark.asyncio
async def test_rejected_message_reaches_dead_letter_queue(
    rabbitmq_settings: ConnectionSettings,
) -> None:
    consumer = MessageConsumer(
        ConsumerConfig(
            queue_name="it.work",
            exchange_name="it.jobs",
            ack_mode=AckMode.MANUAL,
            dead_letter_exchange_name="it.dlx",
        ),
        rabbitmq_settings,
    )
    dead_letters = MessageConsumer(
        ConsumerConfig(
            queue_name="it.dlx",
            dead_letter_exchange_name="it.dlx",
            is_dead_letter_consumer=True,
        ),
        rabbitmq_settings,
    )
    publisher = MessagePublisher(
        PublisherConfig(exchange_name="it.jobs", routing_key="job"),
        rabbitmq_settings,
    )
    dead: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
    dead_letters.on("message", lambda payload, delivery: dead.set_result(payload))

    async def reject(payload: Any, delivery: Any) -> None:
        await consumer.reject_message(delivery, requeue=False)

    consumer.on("message", reject)
    try:
        await consumer.listen()
        await dead_letters.listen()
        assert await publisher.publish("Dead pigeon") is True
        assert await asyncio.wait_for(dead, 5) == "Dead pigeon"
    finally:
        await publisher.stop()
        await dead_letters.stop()
        await consumer.stop()


@pytest.mark.asyncio
async def test_stop_closes_without_disconnect(
    rabbitmq_settings: ConnectionSettings,
) -> None:
    consumer = MessageConsumer(
        ConsumerConfig(queue_name="it.quiet"), rabbitmq_settings
    )
    events: list[str] = []
    for name in ("disconnect", "reconnect", "close"):
        consumer.on(name, lambda *args, _name=name: events.append(_name))
    await consumer.listen()
    assert await consumer.health_check() is True
    await consumer.stop()
    await asyncio.sleep(0.2)
    assert events == ["close"]
