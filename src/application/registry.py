"""
src/application/registry.py
Request Registry — 다수 RFQ 인스턴스 호스팅

원칙:
1. 인스턴스 간 공유 mutable 상태 없음 (EventLog/Scheduler는 thread-safe)
2. 첫 이벤트 또는 명시적 start()로 생성 (journal replay 후 수신)
3. Fault로 teardown된 인스턴스는 restart() 전까지 InstanceUnavailable
4. restart(): 새 PersistentFSM을 journal에서 재생성 (supervisor 역할)

Exports:
- RequestRegistry
"""

import logging
import threading
from concurrent.futures import Future
from typing import Dict, Iterable, List, Optional

from application.engine import HandleResult, PersistentFSM
from application.mailbox import InstanceMailbox
from application.observers import TransitionObserver
from application.timer import ThreadingScheduler, TimerScheduler
from application.transition import RFQ_TRANSITION_TABLE
from application.transition_table import TransitionTable
from domain.errors import InstanceUnavailable
from domain.events import RequestEvent
from domain.ids import validate_persistence_id
from domain.state import RequestData, RequestState
from interfaces.event_log import IEventLog

logger = logging.getLogger(__name__)


class RequestRegistry:
    """
    persistence_id → InstanceMailbox

    Usage:
        registry = RequestRegistry(event_log)
        registry.ask("Request1", SubmitRequest("XS12345", BidOffer.BID))
        registry.current_state("Request1")
    """

    def __init__(
        self,
        event_log: IEventLog,
        scheduler: Optional[TimerScheduler] = None,
        table: TransitionTable = RFQ_TRANSITION_TABLE,
        observers: Iterable[TransitionObserver] = (),
    ):
        self.event_log = event_log
        self.scheduler = scheduler or ThreadingScheduler()
        self.table = table
        self._observers: List[TransitionObserver] = list(observers)
        self._mailboxes: Dict[str, InstanceMailbox] = {}
        self._lock = threading.Lock()

    def _create(self, persistence_id: str) -> InstanceMailbox:
        if not validate_persistence_id(persistence_id):
            raise ValueError(f"Invalid persistence_id: {persistence_id!r}")
        fsm = PersistentFSM(
            persistence_id,
            self.event_log,
            table=self.table,
            scheduler=self.scheduler,
            observers=self._observers,
        )
        return InstanceMailbox(fsm).start()

    def start(self, persistence_id: str) -> InstanceMailbox:
        """
        인스턴스 시작 (이미 살아 있으면 그대로 반환)

        teardown된 인스턴스는 start()로 되살리지 않는다 (restart() 사용).
        """
        with self._lock:
            mailbox = self._mailboxes.get(persistence_id)
            if mailbox is not None:
                return mailbox
            mailbox = self._create(persistence_id)
            self._mailboxes[persistence_id] = mailbox
            logger.info(f"[REGISTRY] started {persistence_id}")
            return mailbox

    def restart(self, persistence_id: str, join_timeout: float = 5.0) -> InstanceMailbox:
        """기존 인스턴스를 정지하고 journal에서 재생성"""
        with self._lock:
            old = self._mailboxes.pop(persistence_id, None)
        if old is not None:
            old.stop(join_timeout=join_timeout)

        with self._lock:
            mailbox = self._create(persistence_id)
            self._mailboxes[persistence_id] = mailbox
        logger.info(f"[REGISTRY] restarted {persistence_id} at {mailbox.fsm.current_state.value}")
        return mailbox

    def handle(self, persistence_id: str, event: RequestEvent) -> "Future[HandleResult]":
        """유일한 변경 진입점 (미시작 인스턴스는 자동 시작)"""
        return self.start(persistence_id).tell(event)

    def ask(self, persistence_id: str, event: RequestEvent, timeout: Optional[float] = 5.0) -> HandleResult:
        return self.handle(persistence_id, event).result(timeout=timeout)

    def _mailbox(self, persistence_id: str) -> InstanceMailbox:
        with self._lock:
            mailbox = self._mailboxes.get(persistence_id)
        if mailbox is None:
            raise InstanceUnavailable(f"Instance {persistence_id} is not started")
        return mailbox

    def current_state(self, persistence_id: str) -> RequestState:
        return self._mailbox(persistence_id).fsm.current_state

    def current_data(self, persistence_id: str) -> RequestData:
        return self._mailbox(persistence_id).fsm.current_data

    def snapshot_now(self, persistence_id: str) -> HandleResult:
        return self._mailbox(persistence_id).fsm.snapshot_now()

    def is_alive(self, persistence_id: str) -> bool:
        with self._lock:
            mailbox = self._mailboxes.get(persistence_id)
        return mailbox is not None and mailbox.is_alive

    def stop(self, persistence_id: str) -> None:
        with self._lock:
            mailbox = self._mailboxes.pop(persistence_id, None)
        if mailbox is not None:
            mailbox.stop()

    def stop_all(self) -> None:
        with self._lock:
            mailboxes = list(self._mailboxes.values())
            self._mailboxes.clear()
        for mailbox in mailboxes:
            mailbox.stop()
        logger.info(f"[REGISTRY] stopped {len(mailboxes)} instance(s)")
