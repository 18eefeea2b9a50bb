"""
Доменные модели документов хранилища.

Коллекции:
- meetings: встречи (participants ссылаются на users по id)
- users: пользователи, устройства вложены в документ пользователя

Идентификаторы непрозрачные (ObjectId или строка), наружу отдаются через str().
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import MeetingStatus


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


def _none_to_str(value: Any) -> Any:
    # null в документе читается как пустая строка
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class Device(BaseModel):
    """
    Устройство пользователя. Для рассылки нужен только token.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Any = Field(default=None, alias="_id")
    token: str = ""
    name: str = ""
    platform: str = ""

    @field_validator("token", "name", "platform", mode="before")
    @classmethod
    def coerce_strings(cls, value: Any) -> Any:
        return _none_to_str(value)


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Any = Field(alias="_id")
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    devices: list[Device] = Field(default_factory=list)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def coerce_names(cls, value: Any) -> Any:
        return _none_to_str(value)

    @field_validator("devices", mode="before")
    @classmethod
    def coerce_devices(cls, value: Any) -> Any:
        return _none_to_list(value)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> User:
        return cls.model_validate(doc)


class Meeting(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Any = Field(alias="_id")
    goal: str = ""
    participants: list[Any] = Field(default_factory=list)
    owner: Any = None
    company: Any = None
    room: Any = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: MeetingStatus | None = None

    @field_validator("goal", mode="before")
    @classmethod
    def coerce_goal(cls, value: Any) -> Any:
        return _none_to_str(value)

    @field_validator("participants", mode="before")
    @classmethod
    def coerce_participants(cls, value: Any) -> Any:
        return _none_to_list(value)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Meeting:
        return cls.model_validate(doc)

    @classmethod
    def from_raw_id(cls, doc: dict[str, Any]) -> Meeting:
        """
        Минимальная встреча из битого документа: _id, статус и participants,
        если это список. Для условного обновления хватает одного _id.
        """
        participants = doc.get("participants")
        return cls.model_construct(
            id=doc.get("_id"),
            goal=doc.get("goal") if isinstance(doc.get("goal"), str) else "",
            participants=participants if isinstance(participants, list) else [],
            owner=None,
            company=None,
            room=None,
            start_time=None,
            end_time=None,
            status=MeetingStatus.scheduled,
        )

    @property
    def key(self) -> str:
        """Строковый ключ встречи (логи, payload, in-flight set)."""
        return str(self.id)

    def __str__(self) -> str:
        return f"[{self.key}]@[{self.goal}]"
