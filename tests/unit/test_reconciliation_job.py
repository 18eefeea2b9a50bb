from __future__ import annotations

import threading
from datetime import datetime, timedelta

import mongomock

from meeting_reconciler.common.config import get_settings
from meeting_reconciler.common.errors import StoreError
from meeting_reconciler.delivery.base import PushResult
from meeting_reconciler.domain.enums import MeetingStatus
from meeting_reconciler.domain.models import Meeting, User
from meeting_reconciler.jobs.dispatcher import TransitionDispatcher
from meeting_reconciler.jobs.reconciliation_job import Reconciler, build_reconciler
from meeting_reconciler.services.device_resolver import DeviceResolver
from meeting_reconciler.services.notifier import Notifier
from meeting_reconciler.services.transitioner import Transitioner
from meeting_reconciler.storage.db import MongoStore
from meeting_reconciler.storage.repositories import MeetingRepository, UserRepository

NOW = datetime(2026, 3, 1, 12, 0, 0)


class _RecordingSender:
    def __init__(self, *, fail_tokens: set[str] | None = None) -> None:
        self.fail_tokens = fail_tokens or set()
        self.lock = threading.Lock()
        self.calls: list[dict] = []

    def send(self, *, data, tokens, retries):
        with self.lock:
            self.calls.append({"data": dict(data), "tokens": list(tokens)})
        if self.fail_tokens & set(tokens):
            raise RuntimeError("gateway down")
        return PushResult(ok=True, provider="fake", success=len(tokens))


class _LockedStore:
    """Общая для нескольких процессов БД: find_due + update с guard под одной блокировкой."""

    def __init__(self, meetings: list[dict], users: list[dict]) -> None:
        self.lock = threading.Lock()
        self.meetings = {m["_id"]: dict(m) for m in meetings}
        self.users = {u["_id"]: User.from_document(u) for u in users}
        self.updates: list[str] = []

    def find_due(self, *, now, limit):
        with self.lock:
            docs = [
                m
                for m in self.meetings.values()
                if m["status"] == 1 and m["start_time"] <= now
            ]
        docs.sort(key=lambda m: m["start_time"])
        return [Meeting.from_document(m) for m in docs[:limit]]

    def update_status(self, meeting_id, status, *, expected=None):
        with self.lock:
            doc = self.meetings.get(meeting_id)
            if doc is None or (expected is not None and doc["status"] != int(expected)):
                return False
            doc["status"] = int(status)
            self.updates.append(meeting_id)
            return True

    def get(self, user_id):
        return self.users.get(user_id)


class _ScriptedSource:
    def __init__(self, script: list) -> None:
        self.script = list(script)
        self.calls = 0

    def find_due(self, *, now, limit):
        self.calls += 1
        item = self.script.pop(0) if self.script else []
        if isinstance(item, Exception):
            raise item
        return item


class _RecordingTransitioner:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.calls: list[tuple[str, MeetingStatus]] = []

    def transition(self, meeting, target):
        with self.lock:
            self.calls.append((meeting.key, target))


def _meeting_doc(mid: str, participants: list[str], *, minutes: int = -1) -> dict:
    return {
        "_id": mid,
        "goal": f"goal {mid}",
        "participants": participants,
        "start_time": NOW + timedelta(minutes=minutes),
        "status": 1,
    }


def _mongo_store() -> MongoStore:
    client = mongomock.MongoClient()
    return MongoStore(client=client, db=client["om"])


def _settings(**update):
    base = {"reconcile_max_workers": 1, "push_retries": 0, "reconcile_limit": 200}
    base.update(update)
    return get_settings().model_copy(update=base)


def _meeting(mid: str) -> Meeting:
    return Meeting.from_document({"_id": mid, "goal": "g", "status": 1})


def test_due_meeting_becomes_active_and_participants_notified() -> None:
    store = _mongo_store()
    store.meetings.insert_one(_meeting_doc("M1", ["U1"]))
    store.users.insert_one({"_id": "U1", "devices": [{"token": "T1"}]})
    sender = _RecordingSender()
    reconciler = build_reconciler(_settings(), store, sender=sender)

    res = reconciler.run_cycle(now=NOW)
    assert reconciler.dispatcher.shutdown(timeout=5) is True

    assert res.ok is True
    assert res.due == 1
    assert res.dispatched == 1
    assert store.meetings.find_one({"_id": "M1"})["status"] == int(MeetingStatus.active)
    assert len(sender.calls) == 1
    assert sender.calls[0]["tokens"] == ["T1"]
    assert sender.calls[0]["data"]["meeting_id"] == "M1"


def test_future_and_non_scheduled_meetings_are_untouched() -> None:
    store = _mongo_store()
    store.meetings.insert_many(
        [
            _meeting_doc("future", ["U1"], minutes=5),
            dict(_meeting_doc("done", ["U1"]), status=3),
        ]
    )
    sender = _RecordingSender()
    reconciler = build_reconciler(_settings(), store, sender=sender)

    res = reconciler.run_cycle(now=NOW)
    reconciler.dispatcher.shutdown(timeout=5)

    assert res.due == 0
    assert store.meetings.find_one({"_id": "future"})["status"] == 1
    assert store.meetings.find_one({"_id": "done"})["status"] == 3
    assert sender.calls == []


def test_notification_failure_is_isolated_per_meeting() -> None:
    store = _mongo_store()
    store.meetings.insert_many(
        [_meeting_doc("A", ["UA"], minutes=-2), _meeting_doc("B", ["UB"], minutes=-1)]
    )
    store.users.insert_many(
        [
            {"_id": "UA", "devices": [{"token": "TA"}]},
            {"_id": "UB", "devices": [{"token": "TB"}]},
        ]
    )
    sender = _RecordingSender(fail_tokens={"TA"})
    reconciler = build_reconciler(_settings(), store, sender=sender)

    reconciler.run_cycle(now=NOW)
    reconciler.dispatcher.shutdown(timeout=5)

    assert store.meetings.find_one({"_id": "A"})["status"] == 2
    assert store.meetings.find_one({"_id": "B"})["status"] == 2
    assert sorted(c["tokens"][0] for c in sender.calls) == ["TA", "TB"]

    # уведомление не повторяется: встреча уже ACTIVE и вне due-set
    second = build_reconciler(_settings(), store, sender=sender)
    assert second.run_cycle(now=NOW).due == 0
    second.dispatcher.shutdown(timeout=5)
    assert len(sender.calls) == 2


def test_query_failure_skips_cycle_and_next_cycle_recovers() -> None:
    source = _ScriptedSource([StoreError("mongo down"), [_meeting("M1")]])
    transitioner = _RecordingTransitioner()
    dispatcher = TransitionDispatcher(transitioner, max_workers=1)
    reconciler = Reconciler(meetings=source, dispatcher=dispatcher, interval_sec=1)

    first = reconciler.run_cycle(now=NOW)
    dispatcher.wait_idle(timeout=5)
    assert first.ok is False
    assert first.reason == "query_failed"
    assert transitioner.calls == []

    second = reconciler.run_cycle(now=NOW)
    dispatcher.shutdown(timeout=5)
    assert second.ok is True
    assert transitioner.calls == [("M1", MeetingStatus.active)]


def test_disabled_reconciler_does_not_query() -> None:
    source = _ScriptedSource([[_meeting("M1")]])
    dispatcher = TransitionDispatcher(_RecordingTransitioner(), max_workers=1)
    reconciler = Reconciler(meetings=source, dispatcher=dispatcher, interval_sec=1, enabled=False)

    res = reconciler.run_cycle(now=NOW)
    dispatcher.shutdown(timeout=5)

    assert res.ok is True
    assert res.reason == "disabled"
    assert source.calls == 0


def test_due_set_is_capped_by_limit() -> None:
    store = _LockedStore(
        [_meeting_doc(f"M{i}", [], minutes=-i) for i in range(1, 6)],
        [],
    )
    transitioner = _RecordingTransitioner()
    dispatcher = TransitionDispatcher(transitioner, max_workers=2)
    reconciler = Reconciler(meetings=store, dispatcher=dispatcher, interval_sec=1, limit=2)

    res = reconciler.run_cycle(now=NOW)
    dispatcher.shutdown(timeout=5)

    assert res.due == 2
    assert sorted(k for k, _ in transitioner.calls) == ["M4", "M5"]


def test_overlapping_reconcilers_transition_and_notify_once() -> None:
    store = _LockedStore([_meeting_doc("M1", ["U1"])], [{"_id": "U1", "devices": [{"token": "T1"}]}])
    sender = _RecordingSender()

    reconcilers = []
    for _ in range(2):
        notifier = Notifier(resolver=DeviceResolver(store), sender=sender, retries=0)
        transitioner = Transitioner(meetings=store, notifier=notifier)
        dispatcher = TransitionDispatcher(transitioner, max_workers=2)
        reconcilers.append(Reconciler(meetings=store, dispatcher=dispatcher, interval_sec=1))

    # оба процесса видят встречу в due-set до того, как кто-то её перевёл
    due = store.find_due(now=NOW, limit=10)
    for r in reconcilers:
        for meeting in due:
            r.dispatcher.submit(meeting, MeetingStatus.active)
    for r in reconcilers:
        assert r.dispatcher.shutdown(timeout=5) is True

    assert store.updates == ["M1"]
    assert store.meetings["M1"]["status"] == 2
    assert len(sender.calls) == 1


def test_run_forever_stops_and_drains() -> None:
    stop_event = threading.Event()

    class _StoppingSource:
        calls = 0

        def find_due(self, *, now, limit):
            self.calls += 1
            stop_event.set()
            return [_meeting("M1"), _meeting("M2")]

    source = _StoppingSource()
    transitioner = _RecordingTransitioner()
    dispatcher = TransitionDispatcher(transitioner, max_workers=2)
    reconciler = Reconciler(meetings=source, dispatcher=dispatcher, interval_sec=60)

    reconciler.run_forever(stop_event, shutdown_timeout=5)

    assert source.calls == 1
    assert sorted(k for k, _ in transitioner.calls) == ["M1", "M2"]
    assert dispatcher.inflight == 0
    assert dispatcher.submit(_meeting("M3"), MeetingStatus.active) is False


def test_build_reconciler_uses_settings() -> None:
    settings = _settings(
        reconcile_interval="250ms", reconcile_limit=7, reconcile_max_workers=3, reconcile_enabled=False
    )
    reconciler = build_reconciler(settings, _mongo_store(), sender=_RecordingSender())
    try:
        assert reconciler.interval_sec == 0.25
        assert reconciler.limit == 7
        assert reconciler.enabled is False
        assert reconciler.dispatcher.max_workers == 3
    finally:
        reconciler.dispatcher.shutdown(timeout=5)


class _FlakyMeetings(MeetingRepository):
    """Репозиторий, у которого первая запись статуса для выбранных встреч падает."""

    def __init__(self, collection, *, fail_once: set[str]) -> None:
        super().__init__(collection)
        self.fail_once = set(fail_once)

    def update_status(self, meeting_id, status, *, expected=None):
        if meeting_id in self.fail_once:
            self.fail_once.discard(meeting_id)
            raise StoreError("write concern timeout")
        return super().update_status(meeting_id, status, expected=expected)


def _wire(store: MongoStore, meetings: MeetingRepository, sender) -> Reconciler:
    notifier = Notifier(
        resolver=DeviceResolver(UserRepository(store.users)), sender=sender, retries=0
    )
    transitioner = Transitioner(meetings=meetings, notifier=notifier)
    dispatcher = TransitionDispatcher(transitioner, max_workers=1)
    return Reconciler(meetings=meetings, dispatcher=dispatcher, interval_sec=1)


def test_update_failure_is_retried_next_cycle_without_affecting_others() -> None:
    store = _mongo_store()
    store.meetings.insert_many(
        [_meeting_doc("A", ["UA"], minutes=-2), _meeting_doc("B", ["UB"], minutes=-1)]
    )
    store.users.insert_many(
        [
            {"_id": "UA", "devices": [{"token": "TA"}]},
            {"_id": "UB", "devices": [{"token": "TB"}]},
        ]
    )
    sender = _RecordingSender()
    reconciler = _wire(store, _FlakyMeetings(store.meetings, fail_once={"A"}), sender)

    first = reconciler.run_cycle(now=NOW)
    assert reconciler.dispatcher.wait_idle(timeout=5) is True

    assert first.dispatched == 2
    assert store.meetings.find_one({"_id": "A"})["status"] == int(MeetingStatus.scheduled)
    assert store.meetings.find_one({"_id": "B"})["status"] == int(MeetingStatus.active)
    assert [c["tokens"] for c in sender.calls] == [["TB"]]

    second = reconciler.run_cycle(now=NOW)
    assert reconciler.dispatcher.shutdown(timeout=5) is True

    assert second.due == 1
    assert store.meetings.find_one({"_id": "A"})["status"] == int(MeetingStatus.active)
    assert [c["tokens"] for c in sender.calls] == [["TB"], ["TA"]]


def test_unreadable_due_meeting_is_still_transitioned() -> None:
    store = _mongo_store()
    broken = _meeting_doc("M1", ["U1"])
    broken["goal"] = None
    worse = _meeting_doc("M2", ["U1"])
    worse["participants"] = "U1"
    store.meetings.insert_many([broken, worse])
    store.users.insert_one({"_id": "U1", "devices": [{"token": "T1"}]})
    sender = _RecordingSender()
    reconciler = build_reconciler(_settings(), store, sender=sender)

    res = reconciler.run_cycle(now=NOW)
    assert reconciler.dispatcher.shutdown(timeout=5) is True

    assert res.due == 2
    assert store.meetings.find_one({"_id": "M1"})["status"] == 2
    assert store.meetings.find_one({"_id": "M2"})["status"] == 2
    # M2 без читаемых participants: переведена, но получателей нет
    assert [c["data"]["meeting_id"] for c in sender.calls] == ["M1"]
