"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только чтение/обновление документов
- ошибки драйвера -> StoreError (с коллекцией и операцией)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import ValidationError
from pymongo import ASCENDING
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from meeting_reconciler.common.errors import StoreError
from meeting_reconciler.common.logging import get_project_logger
from meeting_reconciler.domain.enums import MeetingStatus
from meeting_reconciler.domain.models import Meeting, User

log = get_project_logger()


def _store_error(collection: Collection, operation: str, err: Exception) -> StoreError:
    return StoreError(
        "Ошибка обращения к MongoDB",
        details={"collection": collection.name, "operation": operation, "err": str(err)[:300]},
    )


# =============================================================================
# MEETING REPOSITORY
# =============================================================================
class MeetingRepository:
    def __init__(self, collection: Collection) -> None:
        self.collection = collection

    def find_due(self, *, now: datetime, limit: int) -> list[Meeting]:
        """
        Due-set: status == SCHEDULED и start_time <= now.

        Самые старые первыми, не больше limit за раз.
        """
        query = {
            "status": int(MeetingStatus.scheduled),
            "start_time": {"$lte": now},
        }
        try:
            cursor = (
                self.collection.find(query)
                .sort("start_time", ASCENDING)
                .limit(max(1, int(limit)))
            )
            docs = list(cursor)
        except PyMongoError as e:
            raise _store_error(self.collection, "find_due", e) from e

        meetings: list[Meeting] = []
        for doc in docs:
            try:
                meetings.append(Meeting.from_document(doc))
            except ValidationError as e:
                # Битый документ всё равно переводим: guard-обновлению нужен только _id
                log.warning(
                    "meeting_document_invalid",
                    extra={"payload": {"meeting_id": str(doc.get("_id")), "err": str(e)[:300]}},
                )
                meetings.append(Meeting.from_raw_id(doc))
        return meetings

    def update_status(
        self,
        meeting_id: Any,
        status: MeetingStatus,
        *,
        expected: MeetingStatus | None = None,
    ) -> bool:
        """
        Частичное обновление {"$set": {"status": ...}} по _id.

        expected: guard на текущий статус. False = ни один документ не совпал.
        """
        flt: dict[str, Any] = {"_id": meeting_id}
        if expected is not None:
            flt["status"] = int(expected)
        try:
            result = self.collection.update_one(flt, {"$set": {"status": int(status)}})
        except PyMongoError as e:
            raise _store_error(self.collection, "update_status", e) from e
        return result.matched_count > 0


# =============================================================================
# USER REPOSITORY
# =============================================================================
class UserRepository:
    def __init__(self, collection: Collection) -> None:
        self.collection = collection

    def get(self, user_id: Any) -> User | None:
        try:
            doc = self.collection.find_one({"_id": user_id})
        except PyMongoError as e:
            raise _store_error(self.collection, "get", e) from e
        return User.from_document(doc) if doc else None
