"""
Worker Reconciliation.

Назначение:
- периодически переводить наступившие встречи SCHEDULED -> ACTIVE
- рассылать push участникам
- держать командный сокет (команды только логируются)

Фатальные пути (exit 1): конфигурация, первое подключение к MongoDB,
bind командного сокета. Всё остальное изолируется и логируется.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading

from meeting_reconciler.common.config import Settings, get_settings
from meeting_reconciler.common.errors import AppError
from meeting_reconciler.common.logging import get_project_logger, setup_logging
from meeting_reconciler.common.metrics import maybe_start_metrics_server
from meeting_reconciler.jobs.reconciliation_job import build_reconciler
from meeting_reconciler.listener.server import CommandListener
from meeting_reconciler.services.readiness_service import enforce_startup_readiness
from meeting_reconciler.storage.db import connect_store

log = get_project_logger()

# флаг CLI -> поле Settings
_FLAG_OVERRIDES = {
    "username": "mongo_username",
    "password": "mongo_password",
    "host": "mongo_host",
    "database": "mongo_database",
    "source": "mongo_source",
}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Meeting status reconciler")
    parser.add_argument("--username", default="", help="Mongo username")
    parser.add_argument("--password", default="", help="Mongo password")
    parser.add_argument("--host", default="", help="Mongo hostname")
    parser.add_argument("--database", default="", help="Mongo database")
    parser.add_argument("--source", default="", help="Mongo user source")
    return parser.parse_args(argv)


def apply_flag_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Непустой флаг CLI перекрывает значение из ENV/.env."""
    update = {
        field: getattr(args, flag)
        for flag, field in _FLAG_OVERRIDES.items()
        if (getattr(args, flag, "") or "").strip()
    }
    return settings.model_copy(update=update) if update else settings


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, _frame) -> None:
        log.info("worker_reconciliation_signal", extra={"payload": {"signal": signum}})
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = apply_flag_overrides(get_settings(), args)
    setup_logging(settings)

    log.info(
        "worker_reconciliation_starting",
        extra={
            "payload": {
                "interval": settings.reconcile_interval,
                "limit": settings.reconcile_limit,
                "max_workers": settings.reconcile_max_workers,
            }
        },
    )

    try:
        enforce_startup_readiness(settings, service_name=settings.service_name)
        store = connect_store(settings)
    except AppError as e:
        log.error(
            "worker_reconciliation_fatal",
            extra={"payload": {"err": str(e)[:300], "details": e.details}},
        )
        return 1

    listener: CommandListener | None = None
    try:
        maybe_start_metrics_server(settings.metrics_port)
        if settings.listener_enabled:
            listener = CommandListener.from_settings(settings)
            listener.start()
    except OSError as e:
        log.error(
            "worker_reconciliation_fatal",
            extra={"payload": {"err": str(e)[:300], "stage": "bind"}},
        )
        store.close()
        return 1

    reconciler = build_reconciler(settings, store)
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        reconciler.run_forever(
            stop_event, shutdown_timeout=settings.reconcile_shutdown_timeout_sec
        )
    finally:
        if listener is not None:
            listener.stop()
        store.close()

    log.info("worker_reconciliation_stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
