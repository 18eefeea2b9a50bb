from __future__ import annotations

import socket

import pytest

from meeting_reconciler.common.errors import ValidationError
from meeting_reconciler.contracts.commands import parse_command
from meeting_reconciler.listener import server as server_module
from meeting_reconciler.listener.server import RESPONSE_OK, CommandListener


def test_parse_command_valid() -> None:
    cmd = parse_command(b'{"action": "reload", "data": {"x": 1}}')
    assert cmd.action == "reload"
    assert cmd.data == {"x": 1}


def test_parse_command_allows_null_data() -> None:
    assert parse_command('{"action": "ping", "data": null}').data is None


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"\xff\xfe",
        b"[1, 2]",
        b'{"data": 1}',
        b'{"action": "", "data": 1}',
        b'{"action": "   ", "data": 1}',
        b'{"action": "reload"}',
        b'{"action": "reload", "data": ""}',
    ],
)
def test_parse_command_rejects_invalid(raw: bytes) -> None:
    with pytest.raises(ValidationError):
        parse_command(raw)


def _exchange(address: tuple[str, int], payload: bytes) -> bytes:
    with socket.create_connection(address, timeout=5) as conn:
        conn.sendall(payload)
        chunks = []
        while True:
            try:
                chunk = conn.recv(1024)
            except ConnectionResetError:
                # сервер закрыл сокет с непрочитанным хвостом запроса
                break
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


@pytest.fixture
def listener():
    lst = CommandListener(host="127.0.0.1", port=0, max_line_bytes=64, read_timeout_sec=2)
    lst.start()
    try:
        yield lst
    finally:
        lst.stop()


def test_listener_replies_ok_and_closes(listener, monkeypatch) -> None:
    seen = []
    original = server_module.execute

    def _spy(cmd, *, peer):
        seen.append(cmd.action)
        original(cmd, peer=peer)

    monkeypatch.setattr(server_module, "execute", _spy)

    reply = _exchange(listener.address, b'{"action": "reload", "data": 1}\n')

    assert reply == RESPONSE_OK
    assert seen == ["reload"]


def test_listener_closes_without_reply_on_invalid_input(listener) -> None:
    assert _exchange(listener.address, b'{"action": "", "data": 1}\n') == b""
    assert _exchange(listener.address, b"garbage\n") == b""


def test_listener_rejects_oversized_line(listener) -> None:
    payload = b'{"action": "reload", "data": "' + b"x" * 200 + b'"}\n'
    assert _exchange(listener.address, payload) == b""


def test_listener_bind_conflict_raises() -> None:
    first = CommandListener(host="127.0.0.1", port=0)
    try:
        with pytest.raises(OSError):
            CommandListener(host="127.0.0.1", port=first.address[1])
    finally:
        first.stop()
