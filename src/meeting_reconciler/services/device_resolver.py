"""
Резолвер push-токенов участников встречи.

Правила:
- порядок: участник -> его устройства (как в документе)
- без дедупликации: один токен дважды = две отправки
- участник не найден в users или его документ не читается: пропускаем,
  пишем warning и отдаём в missing, остальные участники резолвятся дальше
- устройства с пустым token отбрасываются: в результате меньше элементов,
  чем устройств у участников (пустой токен шлюз всё равно отвергнет)
- ошибка хранилища не глотается: её изолирует задача перехода
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError

from meeting_reconciler.common.logging import get_project_logger
from meeting_reconciler.domain.models import Meeting, User

log = get_project_logger()


class UserLookup(Protocol):
    def get(self, user_id: Any) -> User | None: ...


@dataclass
class ResolvedDevices:
    tokens: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


class DeviceResolver:
    def __init__(self, users: UserLookup) -> None:
        self.users = users

    def resolve(self, meeting: Meeting) -> ResolvedDevices:
        out = ResolvedDevices()
        for participant in meeting.participants:
            try:
                user = self.users.get(participant)
            except ValidationError as e:
                out.missing.append(str(participant))
                log.warning(
                    "device_resolver_user_invalid",
                    extra={
                        "payload": {
                            "meeting_id": meeting.key,
                            "user_id": str(participant),
                            "err": str(e)[:300],
                        }
                    },
                )
                continue
            if user is None:
                out.missing.append(str(participant))
                log.warning(
                    "device_resolver_user_missing",
                    extra={"payload": {"meeting_id": meeting.key, "user_id": str(participant)}},
                )
                continue
            out.tokens.extend(d.token for d in user.devices if d.token)
        return out
