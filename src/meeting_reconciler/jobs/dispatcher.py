"""
Диспетчер переходов: ограниченный пул потоков + in-flight set.

Зачем нужно:
- один due-meeting = одна задача перехода, задачи не блокируют друг друга
- пул ограничен (RECONCILE_MAX_WORKERS): большой backlog не порождает
  неограниченное число потоков
- встреча, которая уже в очереди/в работе, повторно не ставится
  (экономия работы; корректность всё равно держит guard в БД)
- завершение задач отслеживается здесь, а не циклом reconcile
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from meeting_reconciler.common.logging import get_project_logger
from meeting_reconciler.common.metrics import RECONCILE_INFLIGHT
from meeting_reconciler.domain.enums import MeetingStatus
from meeting_reconciler.domain.models import Meeting
from meeting_reconciler.services.transitioner import Transitioner

log = get_project_logger()


class TransitionDispatcher:
    def __init__(self, transitioner: Transitioner, *, max_workers: int = 8) -> None:
        self.transitioner = transitioner
        self.max_workers = max(1, int(max_workers))
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="transition"
        )
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._inflight: set[str] = set()
        self._closed = False

    @property
    def inflight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def submit(self, meeting: Meeting, target: MeetingStatus) -> bool:
        """
        Ставит переход в пул. Не ждёт выполнения.

        False: встреча уже в работе или диспетчер остановлен.
        """
        key = meeting.key
        with self._lock:
            if self._closed or key in self._inflight:
                return False
            self._inflight.add(key)
            RECONCILE_INFLIGHT.set(len(self._inflight))

        try:
            future = self._executor.submit(self._run, meeting, target)
        except RuntimeError:
            # executor уже закрыт (гонка с shutdown)
            self._release(key)
            return False
        future.add_done_callback(lambda _f, k=key: self._release(k))
        return True

    def _run(self, meeting: Meeting, target: MeetingStatus):
        try:
            return self.transitioner.transition(meeting, target)
        except Exception as e:
            # Transitioner сам ловит ошибки; сюда попадает только неожиданное
            log.exception(
                "transition_task_crashed",
                extra={"payload": {"meeting_id": meeting.key, "err": str(e)[:300]}},
            )
            return None

    def _release(self, key: str) -> None:
        with self._lock:
            self._inflight.discard(key)
            RECONCILE_INFLIGHT.set(len(self._inflight))
            if not self._inflight:
                self._idle.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """
        Ждёт, пока все поставленные переходы завершатся. True: пул пуст.
        """
        with self._lock:
            return self._idle.wait_for(lambda: not self._inflight, timeout=timeout)

    def shutdown(self, *, wait: bool = True, timeout: float | None = None) -> bool:
        """
        Новые задачи больше не принимаются; in-flight дренируются.
        """
        with self._lock:
            self._closed = True
        drained = True
        if wait:
            drained = self.wait_idle(timeout=timeout)
            if not drained:
                log.warning(
                    "dispatcher_drain_timeout",
                    extra={"payload": {"inflight": self.inflight, "timeout_sec": timeout}},
                )
        self._executor.shutdown(wait=drained, cancel_futures=not drained)
        return drained
