"""
Базовые интерфейсы доставки push-уведомлений.

Назначение:
- единый контракт для push-шлюза (GCM/FCM legacy HTTP, тестовые фейки)
- результат отправки в одном формате для логов и метрик
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class PushResult:
    """
    Результат multicast-отправки.
    """

    ok: bool
    provider: str
    success: int = 0
    failure: int = 0
    canonical_ids: int = 0
    failed_tokens: list[str] = field(default_factory=list)
    error: str | None = None


class PushProvider(Protocol):
    """
    Контракт push-шлюза.
    """

    def send(self, *, data: dict[str, Any], tokens: list[str], retries: int) -> PushResult: ...
