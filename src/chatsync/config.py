"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from chatsync.core.types import Provider
from chatsync.messenger.models import Account


class AccountConfig(BaseModel):
    id: str
    instance_id: str
    token: str
    provider: Provider = Provider.GREEN_API
    base_url: Optional[str] = None
    default_chat: Optional[str] = None

    @field_validator("instance_id", "token", mode="before")
    @classmethod
    def _numbers_as_text(cls, value: object) -> object:
        # unquoted numeric ids arrive from YAML as int
        return str(value) if isinstance(value, int) else value

    def to_account(self) -> Account:
        return Account(
            instance_id=self.instance_id,
            token=self.token,
            provider=self.provider,
            base_url=self.base_url,
        )


class ApiConfig(BaseModel):
    green_api_url: str = "https://api.green-api.com"
    evolution_api_url: str = "http://localhost:8080"
    max_attempts: int = 3
    backoff_base: float = 1.0  # seconds, doubled after every failed attempt
    default_retry_after: float = 5.0
    max_retry_after: float = 60.0
    timeout: float = 30.0


class CacheConfig(BaseModel):
    chat_list_ttl: float = 30.0
    history_ttl: float = 10.0
    durable_max_age: float = 24 * 60 * 60
    durable_chat_list_max_age: float = 60 * 60
    durable_max_messages: int = 500


class HistoryConfig(BaseModel):
    page_size: int = 100
    window_minutes: int = 1440
    avatar_limit: int = 20
    preview_labels: dict[str, str] = Field(default_factory=dict)


class PollingConfig(BaseModel):
    enabled: bool = True
    interval_seconds: float = 15.0
    throttle_seconds: float = 1.0
    max_notifications_per_tick: int = 10
    fallback_window_minutes: int = 2
    fallback_recent_seconds: int = 60


class StorageConfig(BaseModel):
    db_path: str = "./data/chatsync.db"
    log_to_db: bool = True


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    timezone: str = "UTC"
    accounts: list[AccountConfig] = Field(default_factory=list)
    api: ApiConfig = Field(default_factory=ApiConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def get_account(self, account_id: Optional[str] = None) -> AccountConfig:
        """Look up an account by id; the first account when ``account_id`` is None."""
        if not self.accounts:
            raise ValueError("No accounts configured")
        if account_id is None:
            return self.accounts[0]
        for account in self.accounts:
            if account.id == account_id or account.instance_id == account_id:
                return account
        raise ValueError(f"Unknown account: {account_id}")


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
