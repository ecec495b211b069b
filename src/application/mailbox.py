"""
src/application/mailbox.py
Instance Mailbox — 인스턴스별 단일 writer queue

SSOT:
- 한 인스턴스의 이벤트는 FIFO 순서로 하나씩 처리 (동시 처리 금지)
- Timer firing도 같은 queue로 들어간다 (event/timer 경합 = 도착 순서)
- teardown (fault 또는 stop): timer 취소 + 대기 이벤트는 InstanceUnavailable

Thread 모델:
- Caller Thread: tell() → queue.put (non-blocking)
- Worker Thread: queue.get → fsm.handle() → Future 결과 설정
- Timer Thread: StateTimeout → queue.put

Exports:
- InstanceMailbox
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Optional, Tuple

from application.engine import HandleResult, HandleStatus, PersistentFSM
from domain.errors import InstanceUnavailable
from domain.events import RequestEvent, StateTimeout

logger = logging.getLogger(__name__)

_STOP = object()


class InstanceMailbox:
    """
    PersistentFSM 1개 + FIFO queue + worker thread

    Usage:
        mailbox = InstanceMailbox(PersistentFSM("Request1", event_log)).start()
        result = mailbox.ask(SubmitRequest("XS12345", BidOffer.BID))
        mailbox.stop()
    """

    def __init__(self, fsm: PersistentFSM):
        self.fsm = fsm
        self.fsm.timeout_sink = self._enqueue_timeout

        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closed = True

    @property
    def persistence_id(self) -> str:
        return self.fsm.persistence_id

    @property
    def is_alive(self) -> bool:
        return not self._closed

    def start(self) -> "InstanceMailbox":
        """복구 (journal replay) 완료 후 worker 시작"""
        with self._lock:
            if not self._closed:
                return self
            if self._thread is not None and self._thread.is_alive():
                raise InstanceUnavailable(f"Instance {self.persistence_id} is still shutting down")
            self.fsm.start()
            self._closed = False
            self._thread = threading.Thread(
                target=self._run,
                name=f"rfq-{self.persistence_id}",
                daemon=True,
            )
            self._thread.start()
        return self

    def tell(self, event: RequestEvent) -> "Future[HandleResult]":
        """이벤트 enqueue (결과는 Future)"""
        future: "Future[HandleResult]" = Future()
        with self._lock:
            if self._closed:
                future.set_exception(self._unavailable())
                return future
            self._queue.put((event, future))
        return future

    def ask(self, event: RequestEvent, timeout: Optional[float] = 5.0) -> HandleResult:
        """
        tell() + 결과 대기

        Raises:
            InstanceUnavailable: teardown 인스턴스
        """
        return self.tell(event).result(timeout=timeout)

    def _enqueue_timeout(self, timeout: StateTimeout):
        with self._lock:
            if self._closed:
                logger.debug(f"[MAILBOX] {self.persistence_id} timeout after close dropped")
                return
            self._queue.put((timeout, None))

    def _run(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                break

            event, future = item
            if future is not None and not future.set_running_or_notify_cancel():
                continue

            if self._closed:
                # teardown 이후 queue에 남은 이벤트
                if future is not None:
                    future.set_exception(self._unavailable())
                continue

            try:
                result = self.fsm.handle(event)
            except InstanceUnavailable as e:
                if future is not None:
                    future.set_exception(e)
                continue
            except Exception as e:
                logger.exception(f"[MAILBOX] {self.persistence_id} unexpected error on {event!r}")
                if future is not None:
                    future.set_exception(e)
                continue

            if result.status == HandleStatus.FAULT:
                # 남은 이벤트는 _STOP 도달 전까지 InstanceUnavailable로 거부
                logger.warning(f"[MAILBOX] {self.persistence_id} torn down after fault")
                self._close()

            if future is not None:
                future.set_result(result)

    def stop(self, join_timeout: float = 5.0) -> None:
        """명시적 정지: timer 취소 + 대기 이벤트 거부"""
        self._close()
        self.fsm.stop()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=join_timeout)

    def _close(self):
        """closed 표시 + timer 취소 + 종료 신호 (queue의 이전 항목은 worker가 거부)"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.fsm.timer.cancel()
            self._queue.put(_STOP)

    def _unavailable(self) -> InstanceUnavailable:
        return InstanceUnavailable(f"Instance {self.persistence_id} is not available")

    def pending(self) -> Tuple[int, bool]:
        """(queue 크기, alive) — 디버그용"""
        return self._queue.qsize(), self.is_alive
