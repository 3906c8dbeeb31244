"""Messaging-specific exceptions for resilient-amqp.

Broker connection errors raised by aio-pika (``AMQPConnectionError``,
``OSError``, ``socket.gaierror``) are deliberately absent: they reach callers
unchanged once the retry policy gives up.
"""

from __future__ import annotations


class MessagingError(Exception):
    """Root exception for the entire resilient-amqp package."""


class NoConnectionError(MessagingError):
    """Raised when no connection is cached and creating one is not allowed."""


class NoChannelError(MessagingError):
    """Raised when no channel is cached and creating one is not allowed."""


class ChannelProtocolError(MessagingError):
    """Raised when the broker destroyed a channel or it failed its health check.

    Typical cause: acknowledging a delivery twice. Consumers turn this into a
    ``disconnect`` event instead of letting it escape.
    """


class TopologyError(MessagingError):
    """Raised when declaring or binding a queue or exchange fails."""

    def __init__(self, message: str, entity: str | None = None) -> None:
        self.entity = entity
        super().__init__(message)


class PublishError(MessagingError):
    """Raised (and emitted as ``error``) when a publish fails."""

    def __init__(
        self,
        message: str,
        exchange: str | None = None,
        routing_key: str | None = None,
    ) -> None:
        self.exchange = exchange
        self.routing_key = routing_key
        super().__init__(message)


class MessagingSerializationError(MessagingError):
    """Raised when a message body cannot be encoded."""
