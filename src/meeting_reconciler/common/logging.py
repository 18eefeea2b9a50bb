"""
Логирование сервиса.

- JSON-строка на событие в stdout, LOG_FORMAT=text для локальной отладки
- имя события в msg (snake_case), поля события в extra={"payload": {...}}
- в каждой записи имя сервиса и поток: переходы идут из пула потоков
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from meeting_reconciler.common.config import Settings, get_settings

_ROOT_LOGGER = "meeting-reconciler"


def _event_ts(record: logging.LogRecord) -> str:
    ts = datetime.fromtimestamp(record.created, UTC)
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _event_ts(record),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "thread": record.threadName,
            "event": record.getMessage(),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict) and payload:
            out["payload"] = payload
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """
    Человекочитаемый вывод: `ts LEVEL logger [thread] event k=v k=v`.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{_event_ts(record)} {record.levelname:<7} {record.name} "
            f"[{record.threadName}] {record.getMessage()}"
        )
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict) and payload:
            line += " " + " ".join(f"{k}={v}" for k, v in payload.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _build_formatter(s: Settings) -> logging.Formatter:
    if (s.log_format or "").lower() == "text":
        return TextFormatter()
    return JsonFormatter(service=s.service_name)


def setup_logging(settings: Settings | None = None) -> None:
    s = settings or get_settings()
    root = logging.getLogger()
    level = getattr(logging, (s.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(level)

    # Повторный вызов только меняет уровень
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(s))
    root.addHandler(handler)

    # драйвер MongoDB и urllib3 слишком шумные на DEBUG
    for noisy in ("pymongo", "urllib3"):
        logging.getLogger(noisy).setLevel(max(level, logging.INFO))


def get_project_logger(name: str = _ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def get_listener_logger() -> logging.Logger:
    """
    Отдельный логгер для командного сокета (удобно фильтровать/маршрутизировать).
    """
    return logging.getLogger(f"{_ROOT_LOGGER}.listener")
