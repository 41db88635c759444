from __future__ import annotations

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_AMQP_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]+$")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, env_file=".env", extra="ignore")

    amqp_url: str = Field(alias="AMQP_URL")
    amqp_exchange: str = Field(default="carbridge_x", alias="AMQP_EXCHANGE")
    amqp_queue: str = Field(default="CarBc", alias="AMQP_QUEUE")
    amqp_routing_keys: str = Field(default="update.r.bc", alias="AMQP_ROUTING_KEYS")
    amqp_prefetch_count: int = Field(default=1, alias="AMQP_PREFETCH_COUNT")

    mongo_db: str = Field(alias="MONGO_DB")
    mongo_database: str = Field(default="cars", alias="MONGO_DATABASE")
    mongo_collection: str = Field(default="cars", alias="MONGO_COLLECTION")
    store_timeout_s: float = Field(default=5.0, alias="STORE_TIMEOUT_S")
    store_watchdog_interval_s: float = Field(default=5.0, alias="STORE_WATCHDOG_INTERVAL_S")

    elastic_url: str = Field(alias="ELASTIC_URL")
    elastic_index: str = Field(default="cars", alias="ELASTIC_INDEX")
    index_timeout_s: float = Field(default=10.0, alias="INDEX_TIMEOUT_S")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("amqp_exchange", "amqp_queue")
    @classmethod
    def _validate_amqp_name(cls, value: str) -> str:
        if not _AMQP_NAME_PATTERN.fullmatch(value):
            raise ValueError(
                "AMQP_EXCHANGE and AMQP_QUEUE must only contain letters, numbers, '_', '.', ':' or '-'"
            )
        return value

    @field_validator("amqp_routing_keys")
    @classmethod
    def _validate_routing_keys(cls, value: str) -> str:
        if not [key for key in value.split(",") if key.strip()]:
            raise ValueError("AMQP_ROUTING_KEYS must name at least one routing key")
        return value

    @field_validator("amqp_prefetch_count")
    @classmethod
    def _validate_prefetch(cls, value: int) -> int:
        if value < 1:
            raise ValueError("AMQP_PREFETCH_COUNT must be >= 1")
        return value

    @field_validator("store_timeout_s", "store_watchdog_interval_s", "index_timeout_s")
    @classmethod
    def _validate_positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts and intervals must be > 0")
        return value

    @field_validator("mongo_db", "elastic_url")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("MONGO_DB and ELASTIC_URL must not be blank")
        return value

    @property
    def routing_keys(self) -> list[str]:
        return [key.strip() for key in self.amqp_routing_keys.split(",") if key.strip()]

    @property
    def mongo_url(self) -> str:
        return f"mongodb://{self.mongo_db}/{self.mongo_database}"

    @property
    def elastic_base_url(self) -> str:
        return self.elastic_url.rstrip("/")
