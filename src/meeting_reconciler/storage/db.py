"""
Подключение к MongoDB.

Назначение:
- один MongoClient на процесс (потокобезопасный пул соединений)
- явный handle MongoStore вместо глобальных переменных
- таймауты на выбор сервера / connect / socket из MONGO_TIMEOUT
"""

from __future__ import annotations

from dataclasses import dataclass

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from meeting_reconciler.common.config import Settings
from meeting_reconciler.common.errors import StoreError
from meeting_reconciler.common.logging import get_project_logger

log = get_project_logger()

MEETINGS_COLLECTION = "meetings"
USERS_COLLECTION = "users"


@dataclass(frozen=True)
class MongoStore:
    client: MongoClient
    db: Database

    @property
    def meetings(self):
        return self.db[MEETINGS_COLLECTION]

    @property
    def users(self):
        return self.db[USERS_COLLECTION]

    def ping(self) -> None:
        try:
            self.client.admin.command("ping")
        except PyMongoError as e:
            raise StoreError(
                "MongoDB недоступна",
                details={"err": str(e)[:300]},
            ) from e

    def close(self) -> None:
        self.client.close()


def build_client(settings: Settings) -> MongoClient:
    timeout_ms = int(settings.mongo_timeout_sec * 1000)
    kwargs = {
        "host": settings.mongo_host,
        "serverSelectionTimeoutMS": timeout_ms,
        "connectTimeoutMS": timeout_ms,
        "socketTimeoutMS": timeout_ms,
        "tz_aware": True,
    }
    if settings.mongo_username:
        kwargs["username"] = settings.mongo_username
        kwargs["password"] = settings.mongo_password or ""
        kwargs["authSource"] = settings.mongo_auth_source
    return MongoClient(**kwargs)


def connect_store(settings: Settings) -> MongoStore:
    """
    Создаёт клиент и проверяет соединение (ping).

    Ошибка здесь: одна из немногих фатальных: вызывается только на старте.
    """
    log.info(
        "mongo_connecting",
        extra={
            "payload": {
                "host": settings.mongo_host,
                "database": settings.mongo_database,
                "timeout_sec": settings.mongo_timeout_sec,
            }
        },
    )
    try:
        client = build_client(settings)
    except (PyMongoError, ValueError, TypeError) as e:
        raise StoreError("Некорректные параметры MongoDB", details={"err": str(e)[:300]}) from e

    store = MongoStore(client=client, db=client[settings.mongo_database])
    try:
        store.ping()
    except StoreError:
        client.close()
        raise

    log.info("mongo_connected", extra={"payload": {"host": settings.mongo_host}})
    return store
