"""
Командный TCP-сокет.

Протокол (одно соединение = один запрос):
- клиент шлёт одну строку JSON {"action": ..., "data": ...} + "\n"
- валидная команда: логируем и отвечаем "OK\n", соединение закрывается
- мусор / превышение размера / таймаут чтения: закрываем без ответа

Команды пока не исполняются (только лог). Аутентификации нет.
"""

from __future__ import annotations

import socketserver
import threading

from meeting_reconciler.common.config import Settings
from meeting_reconciler.common.errors import ValidationError
from meeting_reconciler.common.logging import get_listener_logger
from meeting_reconciler.contracts.commands import ListenCommand, parse_command

log = get_listener_logger()

RESPONSE_OK = b"OK\n"


def execute(cmd: ListenCommand, *, peer: str) -> None:
    log.info(
        "listener_command",
        extra={"payload": {"peer": peer, "action": cmd.action, "data": repr(cmd.data)[:300]}},
    )


class _CommandHandler(socketserver.StreamRequestHandler):
    server: _CommandServer

    def handle(self) -> None:
        peer = "%s:%s" % self.client_address[:2]
        log.info("listener_connection", extra={"payload": {"peer": peer}})

        self.connection.settimeout(self.server.read_timeout_sec)
        max_bytes = self.server.max_line_bytes
        try:
            line = self.rfile.readline(max_bytes + 1)
        except OSError as e:
            log.info("listener_read_failed", extra={"payload": {"peer": peer, "err": str(e)[:200]}})
            return

        if len(line) > max_bytes:
            log.warning(
                "listener_invalid_request",
                extra={"payload": {"peer": peer, "reason": "too_long", "max_bytes": max_bytes}},
            )
            return

        try:
            cmd = parse_command(line.strip())
        except ValidationError as e:
            log.warning(
                "listener_invalid_request",
                extra={
                    "payload": {
                        "peer": peer,
                        "reason": e.message,
                        "raw": line[:200].decode("utf-8", errors="replace"),
                    }
                },
            )
            return

        execute(cmd, peer=peer)
        try:
            self.wfile.write(RESPONSE_OK)
        except OSError as e:
            log.info("listener_write_failed", extra={"payload": {"peer": peer, "err": str(e)[:200]}})


class _CommandServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: tuple[str, int], *, max_line_bytes: int, read_timeout_sec: float):
        self.max_line_bytes = max(1, int(max_line_bytes))
        self.read_timeout_sec = float(read_timeout_sec)
        super().__init__(address, _CommandHandler)


class CommandListener:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        max_line_bytes: int = 4096,
        read_timeout_sec: float = 10.0,
    ) -> None:
        # bind здесь: ошибка порта должна всплыть на старте
        self._server = _CommandServer(
            (host, int(port)),
            max_line_bytes=max_line_bytes,
            read_timeout_sec=read_timeout_sec,
        )
        self._thread: threading.Thread | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> CommandListener:
        return cls(
            host=settings.listener_host,
            port=int(settings.listener_port or 0),
            max_line_bytes=settings.listener_max_line_bytes,
            read_timeout_sec=settings.listener_read_timeout_sec,
        )

    @property
    def address(self) -> tuple[str, int]:
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="command-listener", daemon=True
        )
        self._thread.start()
        log.info("listener_started", extra={"payload": {"address": "%s:%s" % self.address}})

    def stop(self) -> None:
        if self._thread is not None:
            self._server.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        self._server.server_close()
        log.info("listener_stopped")
