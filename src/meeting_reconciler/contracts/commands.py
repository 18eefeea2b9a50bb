"""
Контракт командного сокета.

Формат: одна строка JSON на соединение
    {"action": "<строка>", "data": <что угодно>}

Правила валидации:
- action обязателен и не пустой
- data обязателен (null допустим), пустая строка: ошибка
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from meeting_reconciler.common.errors import ValidationError


class ListenCommand(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str
    data: Any

    @field_validator("action")
    @classmethod
    def action_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("action is empty")
        return value

    @field_validator("data")
    @classmethod
    def data_not_empty_string(cls, value: Any) -> Any:
        if value == "":
            raise ValueError("data is empty")
        return value


def parse_command(raw: bytes | str) -> ListenCommand:
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        obj = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise ValidationError("Некорректный JSON", details={"err": str(e)[:200]}) from e
    if not isinstance(obj, dict):
        raise ValidationError("Ожидается JSON-объект")
    try:
        return ListenCommand.model_validate(obj)
    except PydanticValidationError as e:
        raise ValidationError("Некорректная команда", details={"err": str(e)[:200]}) from e
