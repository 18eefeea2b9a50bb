"""
Утилиты для работы с результатами доставки.

Назначение:
- сборка PushResult из ответов шлюза по батчам
- единое представление ошибок для логов
"""

from __future__ import annotations

from .base import PushResult


def ok_result(
    provider: str,
    *,
    success: int,
    failure: int = 0,
    canonical_ids: int = 0,
    failed_tokens: list[str] | None = None,
) -> PushResult:
    return PushResult(
        ok=True,
        provider=provider,
        success=success,
        failure=failure,
        canonical_ids=canonical_ids,
        failed_tokens=list(failed_tokens or []),
    )


def fail_result(provider: str, error: str, *, failed_tokens: list[str] | None = None) -> PushResult:
    tokens = list(failed_tokens or [])
    return PushResult(
        ok=False,
        provider=provider,
        failure=len(tokens),
        failed_tokens=tokens,
        error=error,
    )


def merge_results(provider: str, results: list[PushResult]) -> PushResult:
    """
    Склеивает результаты батчей. ok=False, если хотя бы один батч упал целиком.
    """
    merged = PushResult(ok=True, provider=provider)
    errors: list[str] = []
    for r in results:
        merged.ok = merged.ok and r.ok
        merged.success += r.success
        merged.failure += r.failure
        merged.canonical_ids += r.canonical_ids
        merged.failed_tokens.extend(r.failed_tokens)
        if r.error:
            errors.append(r.error)
    if errors:
        merged.error = "; ".join(errors)
    return merged
