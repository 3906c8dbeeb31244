"""MessageConsumer — topology, subscription, ack/nack and re-subscribe."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from aio_pika import ExchangeType

from ..codec import decode_body
from ..config import AckMode
from ..exceptions import NoChannelError, TopologyError
from .client import AmqpClient

if TYPE_CHECKING:
    from aio_pika.abc import (
        AbstractChannel,
        AbstractIncomingMessage,
        AbstractQueue,
    )

    from ..config import ConnectionSettings, ConsumerConfig
    from .connection import ConnectionManager

logger = logging.getLogger(__name__)

DEAD_LETTER_EXCHANGE_ARGUMENT = "x-dead-letter-exchange"
DEAD_LETTER_BINDING_KEY = "#"


class MessageConsumer(AmqpClient):
    """Consumes one queue and re-subscribes after every recovered disconnect.

    Each delivery is emitted as ``message(payload, delivery)``: ``payload`` is
    the body decoded as UTF-8 (raw bytes if it is not text) and ``delivery``
    the aio-pika incoming message, valid until it is acknowledged or
    rejected.

    Events: ``listen``, ``message`` plus those of ``AmqpClient``.
    """

    def __init__(
        self,
        config: ConsumerConfig,
        settings: ConnectionSettings | None = None,
        *,
        connection: ConnectionManager | None = None,
        **kwargs: Any,
    ) -> None:
        """Configure consumer.

        Args:
            config: Queue, exchange, dead-letter and delivery settings.
            settings: Broker settings for a private connection.
            connection: Shared ConnectionManager instead of ``settings``.
            **kwargs: Forwarded to ``AmqpClient`` (``connect`` and its kwargs).
        """
        super().__init__(settings, connection=connection, **kwargs)
        self.config = config
        self._listen_lock = asyncio.Lock()
        self._subscribed_channel: AbstractChannel | None = None
        self._consumer_tag: str | None = None
        self._resubscribe_armed = False

    @property
    def consumer_tag(self) -> str | None:
        return self._consumer_tag

    @property
    def listening(self) -> bool:
        channel = self._subscribed_channel
        return channel is not None and channel is self.channels.current_channel

    # ── Topology ─────────────────────────────────────────────────

    async def assert_topology(
        self, channel: AbstractChannel | None = None
    ) -> AbstractQueue:
        """Declare the queue, its dead-letter exchange/queue and its binding.

        Every declaration is idempotent on the broker side.

        Raises:
            TopologyError: a declaration or binding was refused.
        """
        channel = channel or await self.get_channel()
        cfg = self.config

        arguments: dict[str, Any] = {}
        if cfg.declares_dead_letter_topology:
            arguments[DEAD_LETTER_EXCHANGE_ARGUMENT] = cfg.dead_letter_exchange_name
            await self._assert_dead_letter(channel)

        try:
            queue = await channel.declare_queue(
                cfg.queue_name,
                durable=cfg.durable,
                arguments=arguments or None,
            )
        except Exception as e:
            raise TopologyError(
                f"Failed to assert queue {cfg.queue_name!r}: {e}",
                entity=cfg.queue_name,
            ) from e

        if cfg.exchange_name:
            try:
                exchange = await channel.declare_exchange(
                    cfg.exchange_name,
                    cfg.exchange_type,
                    durable=cfg.durable,
                )
                await queue.bind(exchange, routing_key=cfg.routing_key)
            except Exception as e:
                raise TopologyError(
                    f"Failed to bind {cfg.queue_name!r} to {cfg.exchange_name!r}: {e}",
                    entity=cfg.exchange_name,
                ) from e
        return queue

    async def _assert_dead_letter(self, channel: AbstractChannel) -> None:
        cfg = self.config
        name = cfg.dead_letter_exchange_name
        queue_name = cfg.dead_letter_queue_name
        try:
            exchange = await channel.declare_exchange(name, ExchangeType.TOPIC)
            dead_letter_queue = await channel.declare_queue(
                queue_name, durable=cfg.durable
            )
            await dead_letter_queue.bind(exchange, routing_key=DEAD_LETTER_BINDING_KEY)
        except Exception as e:
            raise TopologyError(
                f"Failed to assert dead letter exchange {name!r}: {e}",
                entity=name,
            ) from e

    # ── Subscription ─────────────────────────────────────────────

    async def listen(self) -> str | None:
        """Subscribe to the queue and start emitting ``message`` events.

        Returns the consumer tag, or None when the broker refused the
        subscription (reported through ``error``). Calling it again while
        subscribed on the current channel returns the existing tag.

        Raises:
            TopologyError: the queue/exchange topology could not be asserted.
            Exception: connection errors once the retry policy gives up.
        """
        cfg = self.config
        async with self._listen_lock:
            logger.debug("Trying to listen to queue %r...", cfg.queue_name)
            try:
                channel = await self.get_channel()
            except Exception:
                logger.exception("Failed to get channel while listening")
                raise
            if self._subscribed_channel is channel and not channel.is_closed:
                return self._consumer_tag

            try:
                queue = await self.assert_topology(channel)
            except TopologyError:
                logger.exception("Failed to assert queue existence while listening")
                raise

            try:
                await channel.set_qos(prefetch_count=cfg.prefetch_count)
                tag = await queue.consume(
                    self._on_delivery,
                    no_ack=cfg.ack_mode is AckMode.AUTO,
                    consumer_tag=cfg.service_name,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Failed to listen to queue %r", cfg.queue_name)
                self.emit("error", e)
                return None

            self._subscribed_channel = channel
            self._consumer_tag = tag

        logger.info(
            "Listening to messages on %r (exchange=%r, route=%r)",
            cfg.queue_name,
            cfg.exchange_name,
            cfg.routing_key,
        )
        self._arm_resubscribe()
        self.emit("listen")
        return tag

    async def _on_delivery(self, delivery: AbstractIncomingMessage) -> None:
        logger.debug(
            "Message received on %r (routing_key=%r)",
            self.config.queue_name,
            delivery.routing_key,
        )
        self.emit("message", decode_body(delivery.body), delivery)

    def _arm_resubscribe(self) -> None:
        """Register the single-shot ``reconnect`` handler unless already armed."""
        if self._resubscribe_armed:
            return
        self._resubscribe_armed = True
        self.once("reconnect", self._resubscribe)

    async def _resubscribe(self) -> None:
        self._resubscribe_armed = False
        self._arm_resubscribe()
        try:
            await self.listen()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Failed to re-subscribe after reconnect")
            self.emit("error", e)

    # ── Acknowledgement ──────────────────────────────────────────

    async def acknowledge_message(self, delivery: AbstractIncomingMessage) -> None:
        """Ack a delivery; a channel destroyed by it leads to ``disconnect``.

        Only meaningful with ``AckMode.MANUAL``; acking twice makes the broker
        close the channel.
        """
        try:
            await delivery.ack()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to ack message")
        await self._verify_channel("Incorrectly acknowledged message")

    async def reject_message(
        self, delivery: AbstractIncomingMessage, requeue: bool = False
    ) -> None:
        """Nack a delivery; without ``requeue`` it goes to the dead-letter exchange."""
        try:
            await delivery.nack(multiple=False, requeue=requeue)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to nack message")
        await self._verify_channel("Incorrectly nacked message")

    async def _verify_channel(self, reason: str) -> None:
        try:
            await self.channels.check_channel()
        except asyncio.CancelledError:
            raise
        except NoChannelError:
            # already closed and reported by the channel, or stopped
            logger.debug("%s, no channel left to verify", reason)
            return
        except Exception as e:
            logger.error("%s, channel destroyed: %r", reason, e)
            self._signal_disconnect(e)

    # ── Shutdown ─────────────────────────────────────────────────

    async def stop(self) -> None:
        """Stop consuming and close the channel (and an owned connection)."""
        if self._resubscribe_armed:
            self.off("reconnect", self._resubscribe)
            self._resubscribe_armed = False
        self._subscribed_channel = None
        self._consumer_tag = None
        await super().stop()
