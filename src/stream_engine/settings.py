from __future__ import annotations

import socket
from functools import lru_cache
from typing import Any, List, Mapping, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

STORAGE_NAME = "RedisStreams"
SETTING_PREFIX = "redis_"

DEFAULT_MAX_BLOCK_SIZE = 65536
DEFAULT_FLUSH_INTERVAL_MS = 7500


class RedisStreamsSettings(BaseSettings):
    """Settings of one Redis Streams table.

    Read from ``REDIS_STREAMS_*`` environment variables (and ``.env``);
    table-level overrides go through :func:`load_settings`.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_STREAMS_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # --- broker
    broker: str = "localhost:6379"
    password: str = ""
    stream_list: str = ""

    # --- consumer identity
    group_name: str = ""
    common_consumer_id: str = ""
    num_consumers: int = Field(1, ge=1)
    thread_per_consumer: bool = False
    manage_consumer_groups: bool = False
    consumer_groups_start_id: str = "$"

    # --- ack policy
    ack_every_batch: bool = False
    ack_on_select: bool = True

    # --- polling / claiming
    poll_timeout_ms: int = Field(0, ge=0)
    poll_max_batch_size: int = Field(0, ge=0)
    claim_max_batch_size: int = Field(0, ge=0)
    min_time_for_claim_ms: int = Field(10_000, ge=0)

    # --- read-to-insert flushing
    max_block_size: int = Field(0, ge=0)
    flush_interval_ms: int = Field(0, ge=0)

    # --- write path
    rows_per_message: int = Field(1, ge=1)
    max_message_bytes: int = Field(0, ge=0)
    field_delimiter: Optional[str] = None

    @field_validator("field_delimiter")
    @classmethod
    def _single_char(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if len(v) != 1:
            raise ValueError("field_delimiter must be a single character")
        return v

    @property
    def streams(self) -> List[str]:
        return [s.strip() for s in self.stream_list.split(",") if s.strip()]

    @property
    def block_size(self) -> int:
        return self.max_block_size or DEFAULT_MAX_BLOCK_SIZE

    @property
    def flush_interval(self) -> int:
        return self.flush_interval_ms or DEFAULT_FLUSH_INTERVAL_MS

    def consumer_names(self) -> List[str]:
        """One unique name per consumer context of this table."""
        base = self.common_consumer_id or socket.gethostname()
        if self.num_consumers == 1:
            return [base]
        return [f"{base}-{i}" for i in range(self.num_consumers)]

    def broker_config(self) -> dict:
        # a blocking read must not trip the socket timeout
        socket_timeout = None if self.poll_timeout_ms == 0 else self.poll_timeout_ms / 1000 + 10
        return {
            "broker": self.broker,
            "password": self.password or None,
            "socket_timeout": socket_timeout,
        }


def load_settings(overrides: Optional[Mapping[str, Any]] = None) -> RedisStreamsSettings:
    """Build settings from the environment plus table-level overrides.

    Keys may carry the ``redis_`` prefix used in table definitions.
    """
    clean = {}
    for key, value in (overrides or {}).items():
        name = key.lower()
        if name.startswith(SETTING_PREFIX):
            name = name[len(SETTING_PREFIX) :]
        if name not in RedisStreamsSettings.model_fields:
            raise ConfigurationError(f"Unknown setting '{key}' for storage {STORAGE_NAME}")
        clean[name] = value
    try:
        return RedisStreamsSettings(**clean)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings for storage {STORAGE_NAME}: {e}") from e


@lru_cache()
def get_settings() -> RedisStreamsSettings:
    return load_settings()
