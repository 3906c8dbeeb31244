"""MessagePublisher — exchange/queue assertion and persistent publishing."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aio_pika

from ..codec import encode_body
from ..exceptions import PublishError
from .client import AmqpClient

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue

    from ..config import ConnectionSettings, PublisherConfig
    from .connection import ConnectionManager

logger = logging.getLogger(__name__)


class MessagePublisher(AmqpClient):
    """Publishes persistent messages to an exchange or straight to a queue.

    ``publish`` and ``publish_to_queue`` never raise: a failure is wrapped in
    ``PublishError``, logged and emitted as ``error``, and the call returns
    False.
    """

    def __init__(
        self,
        config: PublisherConfig,
        settings: ConnectionSettings | None = None,
        *,
        connection: ConnectionManager | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(settings, connection=connection, **kwargs)
        self.config = config

    async def assert_exchange(
        self, channel: AbstractChannel | None = None
    ) -> AbstractExchange:
        """Declare the configured exchange; idempotent on the broker side."""
        channel = channel or await self.get_channel()
        cfg = self.config
        return await channel.declare_exchange(
            cfg.exchange_name,
            cfg.exchange_type,
            durable=cfg.durable,
        )

    async def assert_queue(self, channel: AbstractChannel | None = None) -> AbstractQueue:
        """Declare the configured queue.

        Raises:
            ValueError: no ``queue_name`` configured.
        """
        cfg = self.config
        if not cfg.queue_name:
            raise ValueError("No queue_name configured for this publisher")
        channel = channel or await self.get_channel()
        return await channel.declare_queue(cfg.queue_name, durable=cfg.durable)

    def _build_message(
        self, message: Any, headers: dict[str, Any] | None
    ) -> aio_pika.Message:
        body, content_type = encode_body(message)
        return aio_pika.Message(
            body=body,
            content_type=content_type,
            headers=dict(headers or {}),
            app_id=self.config.service_name,
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )

    async def publish(
        self, message: Any, headers: dict[str, Any] | None = None
    ) -> bool:
        """Publish to the configured exchange with the configured routing key."""
        cfg = self.config
        try:
            channel = await self.get_channel()
            exchange = await self.assert_exchange(channel)
            await exchange.publish(
                self._build_message(message, headers),
                routing_key=cfg.routing_key,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._publish_failed(e, cfg.exchange_name, cfg.routing_key)
            return False
        logger.debug(
            "Published message to %r (routing_key=%r)",
            cfg.exchange_name,
            cfg.routing_key,
        )
        return True

    async def publish_to_queue(
        self, message: Any, headers: dict[str, Any] | None = None
    ) -> bool:
        """Publish straight to the configured queue through the default exchange."""
        cfg = self.config
        try:
            channel = await self.get_channel()
            await self.assert_queue(channel)
            await channel.default_exchange.publish(
                self._build_message(message, headers),
                routing_key=cfg.queue_name,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._publish_failed(e, "", cfg.queue_name)
            return False
        logger.debug("Published message to queue %r", cfg.queue_name)
        return True

    def _publish_failed(
        self, cause: Exception, exchange: str, routing_key: str | None
    ) -> None:
        error = PublishError(
            f"Failed to publish message: {cause}",
            exchange=exchange,
            routing_key=routing_key,
        )
        error.__cause__ = cause
        logger.error(
            "Failed to publish message to %r (routing_key=%r): %r",
            exchange,
            routing_key,
            cause,
        )
        self.emit("error", error)
