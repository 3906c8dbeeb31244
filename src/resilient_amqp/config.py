"""Validated, immutable configuration models."""

from __future__ import annotations

import enum
from urllib.parse import quote

from aio_pika import ExchangeType
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AckMode(str, enum.Enum):
    """How deliveries are acknowledged."""

    AUTO = "auto"
    """Broker considers a delivery acknowledged as soon as it is sent."""

    MANUAL = "manual"
    """Application calls ``acknowledge_message`` / ``reject_message``."""


class RetryConfig(BaseModel):
    """Retry settings for (re)connecting to the broker.

    Intervals are expressed in milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    max_tries: int = Field(
        default=-1, description="Total attempts; -1 (or 0) retries forever"
    )
    interval: float = Field(
        default=1000.0, ge=0, description="Initial wait between attempts (ms)"
    )
    backoff: float = Field(
        default=2.0, ge=1, description="Multiplier applied to the wait per attempt"
    )
    max_interval: float | None = Field(
        default=None, ge=0, description="Upper bound for a single wait (ms)"
    )
    jitter: bool = Field(
        default=False, description="Randomise each wait by a factor in [0.5, 1.5]"
    )

    @field_validator("max_tries")
    @classmethod
    def zero_means_unbounded(cls, value: int) -> int:
        return -1 if value == 0 else value

    @model_validator(mode="after")
    def validate_bounds(self) -> RetryConfig:
        if self.max_tries != -1 and self.max_tries < 1:
            raise ValueError("max_tries must be -1 (unbounded) or >= 1")
        if self.max_interval is not None and self.interval > self.max_interval:
            raise ValueError("interval must be <= max_interval")
        return self

    @property
    def unbounded(self) -> bool:
        return self.max_tries == -1


class ConnectionSettings(BaseModel):
    """Where and how to reach the broker."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="localhost", description="The broker host")
    port: int = Field(default=5672, gt=0, description="The broker port")
    username: str = Field(default="guest", description="The broker username")
    password: str = Field(default="guest", description="The broker password")
    virtual_host: str = Field(default="/", description="The broker vhost")
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @property
    def url(self) -> str:
        """AMQP URL with credentials and vhost percent-encoded."""
        return (
            f"amqp://{quote(self.username, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{quote(self.virtual_host, safe='')}"
        )

    @property
    def safe_url(self) -> str:
        """Same as ``url`` with the password masked, for logs."""
        return (
            f"amqp://{quote(self.username, safe='')}:***"
            f"@{self.host}:{self.port}/{quote(self.virtual_host, safe='')}"
        )


class ConsumerConfig(BaseModel):
    """Topology and delivery settings for a ``MessageConsumer``."""

    model_config = ConfigDict(frozen=True)

    service_name: str | None = Field(
        default=None, description="Used as the consumer tag"
    )
    queue_name: str = Field(min_length=1, description="Queue to consume from")
    exchange_name: str | None = Field(
        default=None, description="Exchange the queue is bound to, if any"
    )
    exchange_type: ExchangeType = Field(default=ExchangeType.TOPIC)
    routing_key: str = Field(default="#", description="Binding key for the queue")
    durable: bool = Field(default=False)
    ack_mode: AckMode = Field(default=AckMode.AUTO)
    dead_letter_exchange_name: str | None = Field(
        default=None, description="DLX for rejected messages; no DLX when unset"
    )
    prefetch_count: int = Field(
        default=0, ge=0, description="Max unacknowledged deliveries; 0 is unlimited"
    )
    is_dead_letter_consumer: bool = Field(
        default=False, description="True when consuming the DLX's own queue"
    )

    @property
    def dead_letter_queue_name(self) -> str | None:
        """The DLX's own queue shares the exchange's name."""
        return self.dead_letter_exchange_name

    @property
    def declares_dead_letter_topology(self) -> bool:
        return bool(self.dead_letter_exchange_name) and not self.is_dead_letter_consumer


class PublisherConfig(BaseModel):
    """Topology settings for a ``MessagePublisher``."""

    model_config = ConfigDict(frozen=True)

    service_name: str | None = Field(
        default=None, description="Sent as the message app_id"
    )
    exchange_name: str = Field(min_length=1, description="Exchange to publish to")
    queue_name: str | None = Field(
        default=None, description="Queue targeted by publish_to_queue()"
    )
    routing_key: str = Field(default="")
    durable: bool = Field(default=False)
    exchange_type: ExchangeType = Field(default=ExchangeType.TOPIC)
