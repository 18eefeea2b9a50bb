"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для логов и метрик
- единый стиль исключений по проекту
- разделение фатальных (старт) и изолируемых (на встречу) ошибок
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    UNKNOWN = "unknown"
    VALIDATION = "validation"
    CONFIG = "config"

    # Домен
    INVALID_TRANSITION = "invalid_transition"

    # Провайдеры
    PUSH_PROVIDER_ERROR = "push_provider_error"

    # Инфра/хранилища
    STORE_ERROR = "store_error"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class ConfigError(AppError):
    """Ошибка конфигурации. Фатальна только на старте."""

    def __init__(self, message: str = "Ошибка конфигурации", details: dict | None = None) -> None:
        super().__init__(ErrCode.CONFIG, message, details)


class StoreError(AppError):
    def __init__(self, message: str = "Ошибка хранилища", details: dict | None = None) -> None:
        super().__init__(ErrCode.STORE_ERROR, message, details)


class PushProviderError(AppError):
    def __init__(self, message: str = "Ошибка push-шлюза", details: dict | None = None) -> None:
        super().__init__(ErrCode.PUSH_PROVIDER_ERROR, message, details)


class InvalidTransitionError(AppError):
    def __init__(self, message: str = "Недопустимый переход", details: dict | None = None) -> None:
        super().__init__(ErrCode.INVALID_TRANSITION, message, details)
