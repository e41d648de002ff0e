"""Configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class BackendConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(default="http://127.0.0.1:8000", min_length=1)
    timeout_sec: float = Field(default=10.0, gt=0)


# Ceiling for a growing delay when no max_delay_sec is configured.
MAX_GROWN_DELAY_SEC = 86400.0


class ReconnectPolicy(BaseModel):
    """Fixed or growing delay between reconnect attempts of the live channel."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    delay_sec: float = Field(default=5.0, ge=0)
    backoff_multiplier: float = Field(default=1.0, ge=1)
    max_delay_sec: float | None = Field(default=None, ge=0)
    max_attempts: int | None = Field(default=None, ge=0)

    def delay_for(self, attempt: int) -> float | None:
        """Delay before reconnect number *attempt* (1-based), or None to stop."""
        if not self.enabled:
            return None
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        cap = self.max_delay_sec if self.max_delay_sec is not None else MAX_GROWN_DELAY_SEC
        if self.backoff_multiplier == 1 or self.delay_sec == 0:
            return min(self.delay_sec, cap) if self.max_delay_sec is not None else self.delay_sec

        # growth stops at the cap
        delay = self.delay_sec
        for _ in range(attempt - 1):
            if delay >= cap:
                break
            delay *= self.backoff_multiplier
        return min(delay, cap)


NO_RECONNECT = ReconnectPolicy(enabled=False)
FIXED_RECONNECT = ReconnectPolicy(enabled=True, delay_sec=5.0)


class LiveConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ws_base_url: str = Field(default="ws://localhost:8000", min_length=1)
    variant: str = Field(default="enveloped", pattern=r"^(enveloped|raw)$")
    reconnect: ReconnectPolicy | None = None

    def resolved_policy(self) -> ReconnectPolicy:
        if self.reconnect is not None:
            return self.reconnect
        return FIXED_RECONNECT if self.variant == "raw" else NO_RECONNECT


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="INFO", pattern=r"^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$")
    log_dir: str = "logs"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: BackendConfig = Field(default_factory=BackendConfig)
    live: LiveConfig = Field(default_factory=LiveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "MARKETLINK_BACKEND_URL": ("backend", "base_url"),
    "MARKETLINK_WS_URL": ("live", "ws_base_url"),
    "MARKETLINK_LIVE_VARIANT": ("live", "variant"),
    "MARKETLINK_LOG_LEVEL": ("logging", "level"),
}


def _apply_env(raw_data: dict) -> dict:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            section_data = dict(raw_data.get(section) or {})
            section_data[key] = value
            raw_data[section] = section_data
    return raw_data


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from an optional YAML file plus environment overrides."""
    load_dotenv()

    raw_data: dict = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file '{config_path}' not found. Copy config.yml.example to config.yml first."
            )
        with config_path.open("r", encoding="utf-8") as fh:
            raw_data = yaml.safe_load(fh) or {}

    try:
        return AppConfig.model_validate(_apply_env(raw_data))
    except ValidationError as exc:
        raise ValueError(f"Invalid config '{path or '<defaults>'}': {exc}") from exc
