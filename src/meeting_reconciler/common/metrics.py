"""
Метрики Prometheus для сервиса.

Назначение:
- счётчики циклов reconcile, переходов статуса и push-уведомлений
- опциональный scrape-порт (METRICS_PORT)
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

RECONCILE_CYCLES_TOTAL = Counter(
    "reconciler_cycles_total",
    "Количество циклов reconcile",
    ["result"],  # ok|query_failed|disabled
)

RECONCILE_LAST_DUE = Gauge(
    "reconciler_last_due",
    "Размер due-set в последнем цикле",
)

RECONCILE_LAST_DISPATCHED = Gauge(
    "reconciler_last_dispatched",
    "Количество встреч, отправленных в пул в последнем цикле",
)

RECONCILE_INFLIGHT = Gauge(
    "reconciler_inflight",
    "Количество переходов в очереди/в работе",
)

TRANSITIONS_TOTAL = Counter(
    "reconciler_transitions_total",
    "Результаты переходов статуса встречи",
    ["target", "result"],  # result=done|skipped|failed
)

NOTIFICATIONS_TOTAL = Counter(
    "reconciler_notifications_total",
    "Результаты push-уведомлений",
    ["result"],  # sent|skipped|failed
)

PUSH_DEVICES_TOTAL = Counter(
    "reconciler_push_devices_total",
    "Количество токенов по результату отправки",
    ["result"],  # success|failure
)

STAGE_LATENCY_MS = Histogram(
    "reconciler_stage_latency_ms",
    "Задержка стадий (мс)",
    ["stage"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)


@contextmanager
def track_stage_latency(stage: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        STAGE_LATENCY_MS.labels(stage=stage).observe(elapsed_ms)


def record_cycle_result(*, result: str, due: int = 0, dispatched: int = 0) -> None:
    RECONCILE_CYCLES_TOTAL.labels(result=result).inc()
    RECONCILE_LAST_DUE.set(max(0, due))
    RECONCILE_LAST_DISPATCHED.set(max(0, dispatched))


def record_transition_result(*, target: str, result: str) -> None:
    TRANSITIONS_TOTAL.labels(target=target, result=result).inc()


def record_notification_result(*, result: str, success: int = 0, failure: int = 0) -> None:
    NOTIFICATIONS_TOTAL.labels(result=result).inc()
    if success:
        PUSH_DEVICES_TOTAL.labels(result="success").inc(success)
    if failure:
        PUSH_DEVICES_TOTAL.labels(result="failure").inc(failure)


def maybe_start_metrics_server(port: int) -> bool:
    """
    Поднимает /metrics на отдельном порту. 0 или меньше: выключено.
    """
    if int(port or 0) <= 0:
        return False
    start_http_server(int(port))
    return True
