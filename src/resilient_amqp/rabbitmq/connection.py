"""RabbitMQ connection ownership, locked creation, loss detection."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika.exceptions import ChannelInvalidStateError, ConnectionClosed

from ..events import EventEmitter
from ..exceptions import NoConnectionError
from ..locking import ReadWriteLock
from ..retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from aio_pika.abc import AbstractConnection

    from ..config import ConnectionSettings

logger = logging.getLogger(__name__)

_ALREADY_CLOSED = (ConnectionClosed, ChannelInvalidStateError)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


def is_error_close(exc: BaseException | None) -> bool:
    """aio-pika reports a user-initiated close as ``CancelledError``."""
    return exc is not None and not isinstance(exc, asyncio.CancelledError)


class ConnectionManager(EventEmitter):
    """Owns a single broker connection.

    The connection is created on demand through the retry policy, at most once
    at a time, and cached until it closes. The manager never reconnects on its
    own: a close with an error clears the cache and emits ``disconnect`` so
    the owner decides when to ask for a new connection.

    Events: ``connect(conn)``, ``reconnect(conn)``, ``disconnect(exc)``,
    ``close``.
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        *,
        connect: Callable[..., Awaitable[AbstractConnection]] | None = None,
        **connect_kwargs: Any,
    ) -> None:
        """Configure the broker address, retry policy and connect callable.

        Args:
            settings: Host, credentials and retry settings.
            connect: Coroutine function taking the AMQP URL; defaults to
                ``aio_pika.connect``.
            **connect_kwargs: Extra keyword arguments passed to ``connect``.
        """
        super().__init__()
        self.settings = settings
        self._connect = connect or aio_pika.connect
        self._connect_kwargs = connect_kwargs
        self._retry = RetryPolicy(settings.retry)
        self._lock = ReadWriteLock()
        self._connection: AbstractConnection | None = None
        self._connect_task: asyncio.Task[AbstractConnection] | None = None
        self._state = ConnectionState.DISCONNECTED
        self._has_connected = False
        self._attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._current() is not None

    def _current(self) -> AbstractConnection | None:
        connection = self._connection
        if connection is None or connection.is_closed:
            return None
        return connection

    async def get_connection(
        self, create_if_missing: bool = True
    ) -> AbstractConnection:
        """Return the cached connection, creating it if allowed.

        Concurrent callers share a single creation and receive the same handle.

        Raises:
            NoConnectionError: nothing cached and ``create_if_missing`` is
                false, or ``stop()`` aborted the creation.
            Exception: the broker error of the last attempt once retries are
                exhausted, unchanged.
        """
        async with self._lock.read():
            connection = self._current()
        if connection is not None:
            return connection
        if not create_if_missing:
            raise NoConnectionError(
                "No connection present and not allowed to create a new one"
            )

        async with self._lock.write():
            connection = self._current()
            if connection is not None:
                return connection
            connection = await self._create()
            event = "reconnect" if self._has_connected else "connect"
            self._has_connected = True

        self.emit(event, connection)
        return connection

    async def _create(self) -> AbstractConnection:
        """Run the retried connect as a task ``stop()`` can cancel. Write lock held."""
        self._state = ConnectionState.CONNECTING
        self._attempts = 0
        task = asyncio.ensure_future(self._retry.attempt(self._open))
        self._connect_task = task
        try:
            connection = await task
        except asyncio.CancelledError:
            if self._state is ConnectionState.CLOSING and task.cancelled():
                raise NoConnectionError(
                    "Connection attempt aborted by stop()"
                ) from None
            self._state = ConnectionState.DISCONNECTED
            raise
        except Exception:
            self._state = ConnectionState.DISCONNECTED
            raise
        finally:
            self._connect_task = None

        connection.close_callbacks.add(self._on_close)
        self._connection = connection
        self._state = ConnectionState.CONNECTED
        logger.info("Connected to AMQP at %s", self.settings.safe_url)
        return connection

    async def _open(self) -> AbstractConnection:
        self._attempts += 1
        logger.info(
            "Connecting to AMQP at %s (attempt %d)...",
            self.settings.safe_url,
            self._attempts,
        )
        return await self._connect(self.settings.url, **self._connect_kwargs)

    def _on_close(
        self, sender: AbstractConnection, exc: BaseException | None = None
    ) -> None:
        """aio-pika close callback; runs inside the event loop, so it is atomic."""
        if sender is not self._connection or self._state is ConnectionState.CLOSING:
            return
        self._connection = None
        self._state = ConnectionState.DISCONNECTED
        if is_error_close(exc):
            logger.warning("AMQP connection lost: %r", exc)
            self.emit("disconnect", exc)
        else:
            logger.info("AMQP connection closed")
            self.emit("close")

    async def stop(self) -> None:
        """Close the connection for good; never triggers a reconnect."""
        self._state = ConnectionState.CLOSING
        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()

        async with self._lock.write():
            connection, self._connection = self._connection, None
            try:
                if connection is None:
                    logger.debug("There is no open connection")
                else:
                    connection.close_callbacks.discard(self._on_close)
                    logger.info("Closing connection...")
                    await connection.close()
            except _ALREADY_CLOSED as e:
                logger.debug("Connection was already closed: %r", e)
            finally:
                self._state = ConnectionState.DISCONNECTED

        logger.info("Connection closed")
        self.emit("close")

    async def health_check(self) -> bool:
        """Return True if a connection is cached and open."""
        return self._current() is not None
