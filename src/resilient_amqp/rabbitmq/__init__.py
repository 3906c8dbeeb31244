"""RabbitMQ connection, channel, consumer and publisher built on aio-pika."""

from __future__ import annotations

from .channel import ChannelManager
from .client import AmqpClient
from .connection import ConnectionManager, ConnectionState
from .consumer import MessageConsumer
from .publisher import MessagePublisher

__all__ = [
    "AmqpClient",
    "ChannelManager",
    "ConnectionManager",
    "ConnectionState",
    "MessageConsumer",
    "MessagePublisher",
]
