"""
Машина состояний встречи.

Назначение:
- централизованные правила переходов статуса
- источник guard-условия для условного обновления в БД
  (обновляем только если текущий статус == ожидаемому)

Сейчас активен только переход SCHEDULED -> ACTIVE.
COMPLETE / CANCELED / ZOMBIE есть в enum, но переходы в них не заведены.
"""

from __future__ import annotations

from meeting_reconciler.common.errors import InvalidTransitionError

from .enums import MeetingStatus

# target -> статус, из которого в него можно перейти
_ALLOWED_FROM: dict[MeetingStatus, MeetingStatus] = {
    MeetingStatus.active: MeetingStatus.scheduled,
}


def expected_previous(target: MeetingStatus) -> MeetingStatus:
    """
    Возвращает статус, который должен быть у встречи перед переходом в target.
    """
    previous = _ALLOWED_FROM.get(target)
    if previous is None:
        raise InvalidTransitionError(
            "Переход в этот статус не поддерживается",
            details={"target": int(target)},
        )
    return previous
