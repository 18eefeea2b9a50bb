"""
Reconciliation job.

Назначение:
- раз в RECONCILE_INTERVAL находить встречи, у которых наступило время начала
  (status == SCHEDULED и start_time <= now)
- на каждую встречу ставить независимый переход в ACTIVE (+ push участникам)

Цикл не ждёт завершения переходов: его ответственность заканчивается на
постановке задач в пул. Завершение отслеживает TransitionDispatcher.
Ошибка запроса due-set пропускает цикл; следующий цикл повторит попытку сам.
Встреча с постоянно падающим переходом повторяется каждый цикл без ограничений.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from meeting_reconciler.common.config import Settings
from meeting_reconciler.common.errors import AppError
from meeting_reconciler.common.logging import get_project_logger
from meeting_reconciler.common.metrics import record_cycle_result, track_stage_latency
from meeting_reconciler.delivery.base import PushProvider
from meeting_reconciler.delivery.push.sender import GcmPushSender
from meeting_reconciler.domain.enums import MeetingStatus
from meeting_reconciler.domain.models import Meeting
from meeting_reconciler.services.device_resolver import DeviceResolver
from meeting_reconciler.services.notifier import Notifier
from meeting_reconciler.services.transitioner import Transitioner
from meeting_reconciler.storage.db import MongoStore
from meeting_reconciler.storage.repositories import MeetingRepository, UserRepository

from .dispatcher import TransitionDispatcher

log = get_project_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DueMeetingSource(Protocol):
    def find_due(self, *, now: datetime, limit: int) -> list[Meeting]: ...


@dataclass
class CycleResult:
    ok: bool
    due: int = 0
    dispatched: int = 0
    skipped_inflight: int = 0
    reason: str | None = None


class Reconciler:
    def __init__(
        self,
        *,
        meetings: DueMeetingSource,
        dispatcher: TransitionDispatcher,
        interval_sec: float,
        limit: int = 200,
        enabled: bool = True,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.meetings = meetings
        self.dispatcher = dispatcher
        self.interval_sec = max(0.0, float(interval_sec))
        self.limit = max(1, int(limit))
        self.enabled = enabled
        self.clock = clock

    def run_cycle(self, now: datetime | None = None) -> CycleResult:
        if not self.enabled:
            log.info("reconcile_cycle_skipped", extra={"payload": {"reason": "disabled"}})
            record_cycle_result(result="disabled")
            return CycleResult(ok=True, reason="disabled")

        now = now or self.clock()
        try:
            with track_stage_latency("due_query"):
                due = self.meetings.find_due(now=now, limit=self.limit)
        except Exception as e:
            details = e.details if isinstance(e, AppError) else None
            log.error(
                "reconcile_query_failed",
                extra={"payload": {"err": str(e)[:300], "details": details}},
            )
            record_cycle_result(result="query_failed")
            return CycleResult(ok=False, reason="query_failed")

        if not due:
            log.debug("reconcile_no_entries", extra={"payload": {"now": now.isoformat()}})
            record_cycle_result(result="ok")
            return CycleResult(ok=True)

        dispatched = 0
        skipped = 0
        for meeting in due:
            if self.dispatcher.submit(meeting, MeetingStatus.active):
                dispatched += 1
            else:
                skipped += 1

        if len(due) >= self.limit:
            log.warning(
                "reconcile_due_set_capped",
                extra={"payload": {"limit": self.limit}},
            )
        log.info(
            "reconcile_cycle_dispatched",
            extra={
                "payload": {
                    "due": len(due),
                    "dispatched": dispatched,
                    "skipped_inflight": skipped,
                }
            },
        )
        record_cycle_result(result="ok", due=len(due), dispatched=dispatched)
        return CycleResult(ok=True, due=len(due), dispatched=dispatched, skipped_inflight=skipped)

    def run_forever(
        self, stop_event: threading.Event, *, shutdown_timeout: float | None = None
    ) -> None:
        log.info(
            "reconciler_started",
            extra={
                "payload": {
                    "enabled": self.enabled,
                    "interval_sec": self.interval_sec,
                    "limit": self.limit,
                    "max_workers": self.dispatcher.max_workers,
                }
            },
        )
        while not stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                log.error("reconciler_cycle_error", extra={"payload": {"err": str(e)[:300]}})
            stop_event.wait(self.interval_sec)

        log.info(
            "reconciler_stopping",
            extra={"payload": {"inflight": self.dispatcher.inflight}},
        )
        self.dispatcher.shutdown(wait=True, timeout=shutdown_timeout)
        log.info("reconciler_stopped")


def build_reconciler(
    settings: Settings,
    store: MongoStore,
    *,
    sender: PushProvider | None = None,
) -> Reconciler:
    """
    Собирает граф компонентов из явно переданных настроек и хранилища.
    """
    meetings = MeetingRepository(store.meetings)
    users = UserRepository(store.users)
    notifier = Notifier(
        resolver=DeviceResolver(users),
        sender=sender or GcmPushSender(settings=settings),
        retries=settings.push_retries,
    )
    transitioner = Transitioner(meetings=meetings, notifier=notifier)
    dispatcher = TransitionDispatcher(transitioner, max_workers=settings.reconcile_max_workers)
    return Reconciler(
        meetings=meetings,
        dispatcher=dispatcher,
        interval_sec=settings.reconcile_interval_sec,
        limit=settings.reconcile_limit,
        enabled=settings.reconcile_enabled,
    )
