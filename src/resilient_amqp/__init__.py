"""Resilient AMQP consumers and publishers with reconnection and dead-lettering."""

from __future__ import annotations

from .config import (
    AckMode,
    ConnectionSettings,
    ConsumerConfig,
    PublisherConfig,
    RetryConfig,
)
from .events import EventEmitter
from .exceptions import (
    ChannelProtocolError,
    MessagingError,
    MessagingSerializationError,
    NoChannelError,
    NoConnectionError,
    PublishError,
    TopologyError,
)
from .locking import ReadWriteLock
from .rabbitmq import (
    AmqpClient,
    ChannelManager,
    ConnectionManager,
    ConnectionState,
    MessageConsumer,
    MessagePublisher,
)
from .retry import RetryPolicy

__all__ = [
    "AckMode",
    "AmqpClient",
    "ChannelManager",
    "ChannelProtocolError",
    "ConnectionManager",
    "ConnectionSettings",
    "ConnectionState",
    "ConsumerConfig",
    "EventEmitter",
    "MessageConsumer",
    "MessagePublisher",
    "MessagingError",
    "MessagingSerializationError",
    "NoChannelError",
    "NoConnectionError",
    "PublishError",
    "PublisherConfig",
    "ReadWriteLock",
    "RetryConfig",
    "RetryPolicy",
    "TopologyError",
]
