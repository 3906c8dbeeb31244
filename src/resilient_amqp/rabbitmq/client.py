"""Base client: connection/channel wiring and the recovery pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from ..events import EventEmitter
from .channel import ChannelManager
from .connection import ConnectionManager

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from aio_pika.abc import AbstractChannel, AbstractConnection

    from ..config import ConnectionSettings

logger = logging.getLogger(__name__)


class AmqpClient(EventEmitter):
    """Base for consumers and publishers: one channel, own or shared connection.

    When the connection or the channel is lost with an error, the client
    emits ``disconnect`` once, runs a single recovery task that drops the
    stale channel and opens a new one (reconnecting through the retry policy
    if needed), then emits ``reconnect``. Further losses reported while that
    task runs are folded into it. ``stop()`` cancels everything and never
    leads to a reconnect.

    Events: ``connect``, ``reconnect``, ``disconnect``, ``error``, ``close``.
    """

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        *,
        connection: ConnectionManager | None = None,
        connect: Callable[..., Awaitable[AbstractConnection]] | None = None,
        **connect_kwargs: Any,
    ) -> None:
        """Configure the client.

        Args:
            settings: Broker settings; a private ConnectionManager is built.
            connection: Shared ConnectionManager to use instead of ``settings``.
                A shared connection is left open by ``stop()``.
            connect: Connect callable for a private manager (tests, custom
                transports); defaults to ``aio_pika.connect``.
            **connect_kwargs: Extra keyword arguments for ``connect``.
        """
        super().__init__()
        if settings is not None and connection is None:
            connection = ConnectionManager(settings, connect=connect, **connect_kwargs)
            self._owns_connection = True
        elif connection is not None and settings is None:
            self._owns_connection = False
        else:
            raise ValueError("Pass exactly one of settings or connection")
        self.connections = connection
        self.channels = ChannelManager(connection)
        self._recovery: asyncio.Task[None] | None = None
        self._stopping = False
        self._stopped = False
        self._attached = False

        self._attach()
        self.channels.on("disconnect", self._on_lost)

    @property
    def owns_connection(self) -> bool:
        return self._owns_connection

    @property
    def recovering(self) -> bool:
        return self._recovery is not None and not self._recovery.done()

    async def get_channel(self) -> AbstractChannel:
        """Channel for broker operations, (re)created on demand."""
        self._stopped = False
        self._attach()
        return await self.channels.get_channel()

    async def start(self) -> AbstractChannel:
        """Connect eagerly instead of on the first operation."""
        return await self.get_channel()

    # ── Manager events ───────────────────────────────────────────

    def _on_connect(self, connection: AbstractConnection) -> None:
        self.emit("connect", connection)

    def _on_connection_close(self) -> None:
        if self._owns_connection and not self._stopping:
            self.emit("close")

    def _on_lost(self, exc: BaseException | None = None) -> None:
        self._signal_disconnect(exc)

    # ── Recovery ─────────────────────────────────────────────────

    def _signal_disconnect(self, exc: BaseException | None = None) -> None:
        """Emit ``disconnect`` and start recovery, once per recovery cycle."""
        if self._stopping or self._stopped:
            logger.debug("Ignoring disconnect of a stopped client")
            return
        if self.recovering:
            logger.debug("Recovery already in progress; folding disconnect in")
            return
        logger.warning("Disconnected from AMQP, recovering: %r", exc)
        self._recovery = asyncio.ensure_future(self._recover())
        self.emit("disconnect", exc)

    async def _recover(self) -> None:
        try:
            await self.channels.close_channel()
            await self.channels.get_channel()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Failed to recover AMQP connection")
            self._recovery = None
            self.emit("error", e)
            return
        self._recovery = None
        logger.info("Recovered AMQP channel")
        self.emit("reconnect")

    # ── Shutdown ─────────────────────────────────────────────────

    async def stop(self) -> None:
        """Close the channel, then the connection if it is ours; emit ``close``.

        The client stays quiet afterwards: late losses are ignored until the
        next explicit ``start()`` or operation.
        """
        self._stopped = True
        self._stopping = True
        try:
            recovery, self._recovery = self._recovery, None
            if recovery is not None and not recovery.done():
                recovery.cancel()
                await asyncio.gather(recovery, return_exceptions=True)
            await self.channels.close_channel()
            if self._owns_connection:
                await self.connections.stop()
            else:
                self._detach()
        finally:
            self._stopping = False
        self.emit("close")

    def _attach(self) -> None:
        if self._attached:
            return
        self.connections.on("connect", self._on_connect)
        self.connections.on("disconnect", self._on_lost)
        self.connections.on("close", self._on_connection_close)
        self._attached = True

    def _detach(self) -> None:
        """Stop listening to a shared ConnectionManager."""
        self.connections.off("connect", self._on_connect)
        self.connections.off("disconnect", self._on_lost)
        self.connections.off("close", self._on_connection_close)
        self._attached = False

    async def health_check(self) -> bool:
        """Return True if both the connection and the channel are usable."""
        if not await self.connections.health_check():
            return False
        return await self.channels.health_check()
