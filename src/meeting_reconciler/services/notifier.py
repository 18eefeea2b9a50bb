"""
Уведомления участников о смене статуса встречи.

Алгоритм:
- payload: action=meeting_started, meeting_id, meeting_goal
- получатели: токены всех устройств участников (DeviceResolver)
- нет ни одного токена -> детерминированный no-op (лог + метрика, без вызова шлюза)
- любая ошибка шлюза/резолвера изолирована: пишем в лог, наружу не бросаем
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from meeting_reconciler.common.errors import AppError
from meeting_reconciler.common.logging import get_project_logger
from meeting_reconciler.common.metrics import record_notification_result, track_stage_latency
from meeting_reconciler.delivery.base import PushProvider
from meeting_reconciler.domain.enums import MeetingStatus
from meeting_reconciler.domain.models import Meeting

from .device_resolver import DeviceResolver

log = get_project_logger()

ACTION_MEETING_STARTED = "meeting_started"


@dataclass
class NotifyOutcome:
    ok: bool
    sent: bool
    recipients: int = 0
    success: int = 0
    failure: int = 0
    error: str | None = None


def build_payload(meeting: Meeting) -> dict[str, Any]:
    return {
        "action": ACTION_MEETING_STARTED,
        "meeting_id": meeting.key,
        "meeting_goal": meeting.goal,
    }


class Notifier:
    def __init__(self, *, resolver: DeviceResolver, sender: PushProvider, retries: int = 3) -> None:
        self.resolver = resolver
        self.sender = sender
        self.retries = max(0, int(retries))

    def notify(self, meeting: Meeting, status: MeetingStatus) -> NotifyOutcome:
        try:
            with track_stage_latency("notify"):
                return self._notify(meeting, status)
        except Exception as e:
            details = e.details if isinstance(e, AppError) else None
            log.error(
                "notify_failed",
                extra={
                    "payload": {
                        "meeting_id": meeting.key,
                        "status": int(status),
                        "err": str(e)[:300],
                        "details": details,
                    }
                },
            )
            record_notification_result(result="failed")
            return NotifyOutcome(ok=False, sent=False, error=str(e)[:300])

    def _notify(self, meeting: Meeting, status: MeetingStatus) -> NotifyOutcome:
        resolved = self.resolver.resolve(meeting)
        tokens = resolved.tokens

        if not tokens:
            log.info(
                "notify_skipped_no_devices",
                extra={
                    "payload": {
                        "meeting_id": meeting.key,
                        "status": int(status),
                        "participants": len(meeting.participants),
                        "missing_users": len(resolved.missing),
                    }
                },
            )
            record_notification_result(result="skipped")
            return NotifyOutcome(ok=True, sent=False)

        result = self.sender.send(data=build_payload(meeting), tokens=tokens, retries=self.retries)

        if not result.ok:
            log.error(
                "notify_failed",
                extra={
                    "payload": {
                        "meeting_id": meeting.key,
                        "status": int(status),
                        "recipients": len(tokens),
                        "success": result.success,
                        "failure": result.failure,
                        "err": (result.error or "")[:300],
                    }
                },
            )
            record_notification_result(
                result="failed", success=result.success, failure=result.failure
            )
            return NotifyOutcome(
                ok=False,
                sent=True,
                recipients=len(tokens),
                success=result.success,
                failure=result.failure,
                error=result.error,
            )

        log.info(
            "notify_done",
            extra={
                "payload": {
                    "meeting": str(meeting),
                    "meeting_id": meeting.key,
                    "status": int(status),
                    "recipients": len(tokens),
                    "success": result.success,
                    "failure": result.failure,
                    "missing_users": len(resolved.missing),
                }
            },
        )
        record_notification_result(result="sent", success=result.success, failure=result.failure)
        return NotifyOutcome(
            ok=True,
            sent=True,
            recipients=len(tokens),
            success=result.success,
            failure=result.failure,
        )
