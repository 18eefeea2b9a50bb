"""
Доменные перечисления (enum).

Числовые значения статусов фиксированы: они лежат в БД и уходят клиентам.
"""

from __future__ import annotations

import enum


class MeetingStatus(enum.IntEnum):
    """
    Статус встречи.
    """

    scheduled = 1
    active = 2
    complete = 3
    canceled = 4
    zombie = 5
