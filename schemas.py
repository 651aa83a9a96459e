from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

import config


class PublisherConfig(BaseModel):
    """Settings for one bulk publishing run, validated at startup."""

    model_config = ConfigDict(frozen=True)

    url: str = config.AMQP_URL
    exchanges: Tuple[str, ...] = Field(default_factory=lambda: tuple(config.DEFAULT_EXCHANGES))
    total_messages: int = Field(default=config.TOTAL_MESSAGES, gt=0)
    routing_key: str = config.ROUTING_KEY
    content_type: str = config.CONTENT_TYPE
    progress_every: int = Field(default=config.PROGRESS_EVERY, gt=0)
    concurrency: int = Field(default=config.CONCURRENCY, ge=1)
    retries: int = Field(default=config.PUBLISH_RETRIES, ge=0)
    retry_backoff: float = Field(default=config.RETRY_BACKOFF_SEC, ge=0)
    connect_timeout: float = Field(default=config.CONNECT_TIMEOUT_SEC, gt=0)

    @field_validator("exchanges")
    @classmethod
    def _check_exchanges(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        names = tuple(name.strip() for name in value)
        if not names:
            raise ValueError("at least one exchange is required")
        if any(not name for name in names):
            raise ValueError("exchange names must not be blank")
        return names
