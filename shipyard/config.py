from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    APPROVAL_GATE_TTL,
    DEFAULT_STEP_TIMEOUT,
    DEFAULT_STEP_TIMEOUTS,
    ERROR_LOG_TTL,
    PIPELINE_TIMEOUT,
    SESSION_TTL,
    WORKFLOW_TTL,
)
from .contracts import StepType


class RedisConfig(BaseModel):
    """Connection settings shared by the Redis store and channel."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class StoreConfig(BaseModel):
    """State store settings. No URL means in-memory."""

    url: Optional[str] = None


class ChannelConfig(BaseModel):
    """Event channel settings."""

    backend: Literal["inmemory", "redis", "null"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    queue_size: int = 100


class TimeoutConfig(BaseModel):
    """Time budgets in seconds."""

    steps: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_STEP_TIMEOUTS))
    pipeline: float = PIPELINE_TIMEOUT

    def for_step(self, step: StepType | str) -> float:
        key = step.value if isinstance(step, StepType) else step
        return self.steps.get(key, DEFAULT_STEP_TIMEOUT)


class TTLConfig(BaseModel):
    """Store record lifetimes in seconds."""

    session: int = SESSION_TTL
    workflow: int = WORKFLOW_TTL
    approval_gate: int = APPROVAL_GATE_TTL
    error_log: int = ERROR_LOG_TTL


class RetryConfig(BaseModel):
    """Backoff applied to state store writes."""

    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 1.0
    backoff_multiplier: float = 2.0


class ShipyardConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = StoreConfig()
    channel: ChannelConfig = ChannelConfig()
    timeouts: TimeoutConfig = TimeoutConfig()
    ttl: TTLConfig = TTLConfig()
    retry: RetryConfig = RetryConfig()
    review_steps: List[StepType] = Field(default_factory=list)


def load_config(path: Optional[str] = None) -> ShipyardConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SHIPYARD_CONFIG env
            variable or 'shipyard.yaml' in the current directory.
    """

    config_path = path or os.getenv("SHIPYARD_CONFIG", "shipyard.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ShipyardConfig(**data)
    else:
        config = ShipyardConfig()

    env_store_url = os.getenv("SHIPYARD_STORE_URL")
    if env_store_url:
        config.store.url = env_store_url
    env_channel = os.getenv("SHIPYARD_CHANNEL")
    if env_channel:
        config.channel.backend = env_channel.lower()
    return config
