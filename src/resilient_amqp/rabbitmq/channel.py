"""RabbitMQ channel ownership, health check and lazy recreation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aio_pika.exceptions import (
    ChannelClosed,
    ChannelInvalidStateError,
    ConnectionClosed,
)

from ..events import EventEmitter
from ..exceptions import ChannelProtocolError, NoChannelError
from ..locking import ReadWriteLock
from .connection import is_error_close

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel

    from .connection import ConnectionManager

logger = logging.getLogger(__name__)

# Every broker declares this exchange, so a passive declare is a cheap probe.
HEALTH_CHECK_EXCHANGE = "amq.direct"

_ALREADY_CLOSED = (ChannelClosed, ChannelInvalidStateError, ConnectionClosed)


class ChannelManager(EventEmitter):
    """Owns one channel over the connection of a ``ConnectionManager``.

    Unlike the connection, a lost channel is not rebuilt when it closes: the
    cache is cleared and the next ``get_channel()`` call opens a fresh one.

    Events: ``disconnect(exc)`` when the channel closes with an error.
    """

    def __init__(self, connections: ConnectionManager) -> None:
        super().__init__()
        self.connections = connections
        self._lock = ReadWriteLock()
        self._channel: AbstractChannel | None = None

    @property
    def current_channel(self) -> AbstractChannel | None:
        channel = self._channel
        if channel is None or channel.is_closed:
            return None
        return channel

    async def get_channel(self, create_if_missing: bool = True) -> AbstractChannel:
        """Return the cached channel, opening and health-checking one if allowed.

        Raises:
            NoChannelError: nothing cached and ``create_if_missing`` is false.
            ChannelProtocolError: the new channel failed its health check.
        """
        async with self._lock.read():
            channel = self.current_channel
        if channel is not None:
            return channel
        if not create_if_missing:
            raise NoChannelError(
                "No channel present and not allowed to create a new one"
            )

        async with self._lock.write():
            channel = self.current_channel
            if channel is not None:
                return channel
            channel = await self._create()
        return channel

    async def _create(self) -> AbstractChannel:
        connection = await self.connections.get_connection()
        logger.debug("Creating channel...")
        channel = await connection.channel()
        try:
            await self.check_channel(channel)
        except ChannelProtocolError:
            logger.warning("New channel failed its health check, closing it")
            await self._close_quietly(channel)
            raise
        channel.close_callbacks.add(self._on_close)
        self._channel = channel
        logger.debug("Channel created")
        return channel

    async def check_channel(self, channel: AbstractChannel | None = None) -> None:
        """Passively probe the given (or current) channel.

        Raises:
            NoChannelError: no channel to probe.
            ChannelProtocolError: the broker refused the probe.
        """
        channel = channel or self.current_channel
        if channel is None:
            raise NoChannelError("No channel to check")
        try:
            await channel.get_exchange(HEALTH_CHECK_EXCHANGE, ensure=True)
        except Exception as e:
            raise ChannelProtocolError(f"Channel health check failed: {e}") from e

    def _on_close(
        self, sender: AbstractChannel, exc: BaseException | None = None
    ) -> None:
        if sender is not self._channel:
            return
        self._channel = None
        if is_error_close(exc):
            logger.warning("Channel was closed: %r", exc)
            self.emit("disconnect", exc)
        else:
            logger.debug("Channel was closed")

    async def close_channel(self) -> None:
        """Detach from and close the current channel; safe to call repeatedly."""
        async with self._lock.write():
            channel, self._channel = self._channel, None
            if channel is None:
                return
            channel.close_callbacks.discard(self._on_close)
            logger.info("Closing channel...")
            await self._close_quietly(channel)
            logger.info("Channel closed")

    @staticmethod
    async def _close_quietly(channel: AbstractChannel) -> None:
        try:
            if not channel.is_closed:
                await channel.close()
        except _ALREADY_CLOSED as e:
            logger.debug("Channel was already closed: %r", e)

    async def health_check(self) -> bool:
        """Return True if a channel is cached and passes the probe."""
        if self.current_channel is None:
            return False
        try:
            await self.check_channel()
        except ChannelProtocolError:
            return False
        return True
