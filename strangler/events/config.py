"""events-service configuration.

The events service is both a producer (HTTP -> Kafka) and a consumer
(Kafka -> log). Connection details come from environment variables so the
same image runs locally and in the cluster; topic names and the consumer
group are fixed.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict

# --- Topics -----------------------------------------------------------------
MOVIE_TOPIC = "movie-events"
USER_TOPIC = "user-events"
PAYMENT_TOPIC = "payment-events"
TOPICS = (MOVIE_TOPIC, USER_TOPIC, PAYMENT_TOPIC)

# Consumer group id:
# - All three consumer loops share it.
# - Running more replicas spreads partitions across them instead of every
#   replica reading every message.
KAFKA_GROUP_ID = "cinemaabyss-events-consumer-group"


class EventsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int = 8082
    # Broker addresses, e.g. ["kafka:9092"].
    kafka_brokers: tuple[str, ...] = ("localhost:9092",)
    group_id: str = KAFKA_GROUP_ID
    # Seconds to wait for the broker to acknowledge a publish.
    publish_timeout: float = 10.0
    # 0 means a failed consumer loop stays down.
    consumer_max_restarts: int = 0
    consumer_restart_backoff: float = 1.0

    @property
    def bootstrap_servers(self) -> str:
        return ",".join(self.kafka_brokers)


class ConfigError(RuntimeError):
    """Raised when the events service cannot start with the given environment."""


def _number(env: Mapping[str, str], name: str, default: str, kind: type):
    raw = env.get(name, default)
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name} value: {raw!r}") from exc


def load_settings(environ: Optional[Mapping[str, str]] = None) -> EventsSettings:
    """Resolve events settings from the environment.

    Raises:
        ConfigError: a numeric variable does not parse.
    """
    env = os.environ if environ is None else environ
    brokers = tuple(b.strip() for b in env.get("KAFKA_BROKERS", "localhost:9092").split(",") if b.strip())
    return EventsSettings(
        port=_number(env, "PORT", "8082", int),
        kafka_brokers=brokers,
        publish_timeout=_number(env, "KAFKA_PUBLISH_TIMEOUT", "10", float),
        consumer_max_restarts=_number(env, "CONSUMER_MAX_RESTARTS", "0", int),
        consumer_restart_backoff=_number(env, "CONSUMER_RESTART_BACKOFF", "1.0", float),
    )
