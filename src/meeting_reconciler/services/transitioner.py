"""
Переход статуса встречи + уведомление.

Правила:
- одно условное обновление: _id == meeting.id И status == ожидаемый (guard)
- 0 совпавших документов: встречу уже перевёл кто-то другой: benign skip,
  уведомление НЕ отправляем
- обновление строго раньше уведомления
- любые ошибки изолированы в рамках одной встречи: лог + результат failed,
  встреча останется в due-set и будет повторена в следующем цикле
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from meeting_reconciler.common.errors import AppError
from meeting_reconciler.common.logging import get_project_logger
from meeting_reconciler.common.metrics import record_transition_result, track_stage_latency
from meeting_reconciler.domain.enums import MeetingStatus
from meeting_reconciler.domain.models import Meeting
from meeting_reconciler.domain.state_machine import expected_previous

from .notifier import Notifier, NotifyOutcome

log = get_project_logger()

RESULT_DONE = "done"
RESULT_SKIPPED = "skipped"
RESULT_FAILED = "failed"


class StatusUpdater(Protocol):
    def update_status(
        self,
        meeting_id: Any,
        status: MeetingStatus,
        *,
        expected: MeetingStatus | None = None,
    ) -> bool: ...


@dataclass
class TransitionOutcome:
    meeting_id: str
    target: MeetingStatus
    result: str  # done|skipped|failed
    notify: NotifyOutcome | None = None
    error: str | None = None


class Transitioner:
    def __init__(self, *, meetings: StatusUpdater, notifier: Notifier) -> None:
        self.meetings = meetings
        self.notifier = notifier

    def transition(self, meeting: Meeting, target: MeetingStatus) -> TransitionOutcome:
        target = MeetingStatus(target)
        try:
            expected = expected_previous(target)
            with track_stage_latency("transition_update"):
                matched = self.meetings.update_status(meeting.id, target, expected=expected)
        except Exception as e:
            details = e.details if isinstance(e, AppError) else None
            log.error(
                "transition_failed",
                extra={
                    "payload": {
                        "meeting_id": meeting.key,
                        "target": int(target),
                        "err": str(e)[:300],
                        "details": details,
                    }
                },
            )
            record_transition_result(target=target.name, result=RESULT_FAILED)
            return TransitionOutcome(
                meeting_id=meeting.key, target=target, result=RESULT_FAILED, error=str(e)[:300]
            )

        if not matched:
            log.info(
                "transition_skipped_not_matched",
                extra={
                    "payload": {
                        "meeting_id": meeting.key,
                        "target": int(target),
                        "expected": int(expected),
                    }
                },
            )
            record_transition_result(target=target.name, result=RESULT_SKIPPED)
            return TransitionOutcome(meeting_id=meeting.key, target=target, result=RESULT_SKIPPED)

        log.info(
            "transition_done",
            extra={
                "payload": {
                    "meeting": str(meeting),
                    "meeting_id": meeting.key,
                    "from": int(expected),
                    "to": int(target),
                }
            },
        )
        record_transition_result(target=target.name, result=RESULT_DONE)

        notify = self.notifier.notify(meeting, target)
        return TransitionOutcome(
            meeting_id=meeting.key, target=target, result=RESULT_DONE, notify=notify
        )
