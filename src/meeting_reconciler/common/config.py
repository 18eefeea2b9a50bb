"""
Централизованная конфигурация сервиса (ENV / .env).

Важно:
- настройки читаются из .env и переменных окружения
- типизированные значения через pydantic-settings
- секреты можно передать файлом: <NAME>_FILE=/run/secrets/...
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .durations import parse_duration

_DEFAULT_MONGO_TIMEOUT_SEC = 10.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    app_env: str = Field(default="dev", alias="APP_ENV")
    service_name: str = Field(default="meeting-reconciler", alias="SERVICE_NAME")

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------
    reconcile_enabled: bool = Field(default=True, alias="RECONCILE_ENABLED")
    reconcile_interval: str = Field(default="5s", alias="RECONCILE_INTERVAL")
    reconcile_limit: int = Field(default=200, alias="RECONCILE_LIMIT")
    reconcile_max_workers: int = Field(default=8, alias="RECONCILE_MAX_WORKERS")
    reconcile_shutdown_timeout: str = Field(default="30s", alias="RECONCILE_SHUTDOWN_TIMEOUT")

    # -------------------------------------------------------------------------
    # Push gateway (GCM/FCM legacy HTTP)
    # -------------------------------------------------------------------------
    push_api_key: str | None = Field(default=None, alias="PUSH_API_KEY")
    push_endpoint: str = Field(
        default="https://fcm.googleapis.com/fcm/send", alias="PUSH_ENDPOINT"
    )
    push_retries: int = Field(default=3, alias="PUSH_RETRIES")
    push_retry_backoff_ms: int = Field(default=1000, alias="PUSH_RETRY_BACKOFF_MS")
    push_timeout_sec: int = Field(default=10, alias="PUSH_TIMEOUT_SEC")

    # -------------------------------------------------------------------------
    # Storage (MongoDB)
    # -------------------------------------------------------------------------
    mongo_host: str | None = Field(default=None, alias="MONGO_HOST")
    mongo_username: str | None = Field(default=None, alias="MONGO_USERNAME")
    mongo_password: str | None = Field(default=None, alias="MONGO_PASSWORD")
    mongo_database: str = Field(default="om", alias="MONGO_DATABASE")
    mongo_source: str = Field(default="", alias="MONGO_SOURCE")
    mongo_timeout: str = Field(default="10s", alias="MONGO_TIMEOUT")

    # -------------------------------------------------------------------------
    # Command listener
    # -------------------------------------------------------------------------
    listener_enabled: bool = Field(default=True, alias="LISTENER_ENABLED")
    listener_host: str = Field(default="0.0.0.0", alias="LISTENER_HOST")
    listener_port: int | None = Field(default=None, alias="LISTENER_PORT")
    listener_max_line_bytes: int = Field(default=4096, alias="LISTENER_MAX_LINE_BYTES")
    listener_read_timeout_sec: float = Field(default=10.0, alias="LISTENER_READ_TIMEOUT_SEC")

    # -------------------------------------------------------------------------
    # Metrics / Logging
    # -------------------------------------------------------------------------
    metrics_port: int = Field(default=0, alias="METRICS_PORT")  # 0 = выключено
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|text

    def model_post_init(self, __context) -> None:
        _apply_file_overrides(self)

    @property
    def reconcile_interval_sec(self) -> float:
        return parse_duration(self.reconcile_interval)

    @property
    def reconcile_shutdown_timeout_sec(self) -> float:
        return parse_duration(self.reconcile_shutdown_timeout)

    @property
    def mongo_timeout_sec(self) -> float:
        # Кривой таймаут не фатален: откатываемся на 10s
        try:
            value = parse_duration(self.mongo_timeout)
        except ValueError:
            return _DEFAULT_MONGO_TIMEOUT_SEC
        return value if value > 0 else _DEFAULT_MONGO_TIMEOUT_SEC

    @property
    def mongo_auth_source(self) -> str:
        return (self.mongo_source or "").strip() or self.mongo_database


def _apply_file_overrides(settings: Settings) -> None:
    alias_to_field = {}
    for name, field in type(settings).model_fields.items():
        alias = field.alias or name
        alias_to_field[str(alias)] = name
        alias_to_field[str(name)] = name

    for key, path in os.environ.items():
        if not key.endswith("_FILE"):
            continue
        base = key[: -len("_FILE")]
        target = alias_to_field.get(base)
        if not target:
            continue
        file_path = (path or "").strip()
        if not file_path:
            continue
        try:
            raw = Path(file_path).read_text(encoding="utf-8")
        except Exception as e:
            logging.getLogger("meeting-reconciler").error(
                "config_file_read_failed",
                extra={"payload": {"env_key": key, "path": file_path, "error": str(e)[:200]}},
            )
            raise RuntimeError(f"Failed to read {key} from {file_path}") from e
        setattr(settings, target, raw.strip())


_SETTINGS = Settings()


def get_settings() -> Settings:
    return _SETTINGS
