"""
src/application/engine.py
Persistent FSM Engine — 이벤트 처리 + 영속 + timer + 복구

SSOT:
- start(): snapshot + 이후 journal replay → (state, data) 복원, 마지막 for_max timer 재-arm
- handle(event): lookup → Outcome → write-ahead append → state/data 갱신 → timer
- snapshot_now(): 현재 (state, data, sequence_nr, 미결 timeout) snapshot (history 유지)
- current_state / current_data: 읽기 전용

원칙:
1. Write-ahead: append 성공 전에는 in-memory 상태 변경 금지
2. Fold는 live/recovery 공통 (apply_event 하나)
3. Recovery는 side-effect 없음 (observer 전이 알림 없음)
4. 단일 writer: handle()은 인스턴스 lock으로 직렬화
5. Stale timeout (세대/상태 불일치)은 전이 없이 폐기

Exports:
- HandleStatus: handle() 결과 분류
- HandleResult: handle() 결과 값
- PersistentFSM: 인스턴스 1개
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

from application.observers import Transition, TransitionObserver
from application.timer import StateTimer, ThreadingScheduler, TimerScheduler
from application.transition import RFQ_TRANSITION_TABLE
from application.transition_table import TransitionTable
from domain.errors import (
    FaultInjected,
    InstanceUnavailable,
    PersistenceFailure,
    RfqError,
    UnhandledEvent,
)
from domain.events import RequestEvent, StateTimeout
from domain.fold import apply_event
from domain.journal import JournalEntry
from domain.state import INITIAL_DATA, RequestData, RequestState
from interfaces.event_log import IEventLog

logger = logging.getLogger(__name__)

Fold = Callable[[RequestEvent, RequestData], RequestData]


class HandleStatus(Enum):
    """
    handle() 결과

    - TRANSITIONED: goto 확정 (영속 완료)
    - STAYED: 명시 규칙이 stay 반환
    - IGNORED: catch-all stay (system event)
    - UNHANDLED: 규칙 없음 → 이벤트 폐기
    - STALE_TIMEOUT: 이미 떠난 상태의 timeout → 폐기
    - PERSISTENCE_FAILURE: append/snapshot 실패 → 전이 중단
    - FAULT: handler fault → 인스턴스 teardown
    - SNAPSHOT_SAVED: snapshot_now() 성공
    """
    TRANSITIONED = "TRANSITIONED"
    STAYED = "STAYED"
    IGNORED = "IGNORED"
    UNHANDLED = "UNHANDLED"
    STALE_TIMEOUT = "STALE_TIMEOUT"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    FAULT = "FAULT"
    SNAPSHOT_SAVED = "SNAPSHOT_SAVED"


@dataclass(frozen=True)
class HandleResult:
    """handle() 결과 값 (recoverable 에러는 error 필드로 전달)"""

    status: HandleStatus
    state: RequestState
    data: RequestData
    event: Optional[RequestEvent] = None
    previous_state: Optional[RequestState] = None
    error: Optional[RfqError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PersistentFSM:
    """
    Persistent FSM 인스턴스

    Usage:
        fsm = PersistentFSM("Request1", event_log)
        fsm.start()
        fsm.handle(SubmitRequest("XS12345", BidOffer.BID))

    timeout_sink:
        timer firing 전달 경로. 기본은 self.deliver_timeout (직접 handle).
        InstanceMailbox는 자신의 queue로 연결한다.
    """

    def __init__(
        self,
        persistence_id: str,
        event_log: IEventLog,
        table: TransitionTable = RFQ_TRANSITION_TABLE,
        scheduler: Optional[TimerScheduler] = None,
        fold: Fold = apply_event,
        initial_state: RequestState = RequestState.NEW,
        initial_data: RequestData = INITIAL_DATA,
        observers: Iterable[TransitionObserver] = (),
        timeout_sink: Optional[Callable[[StateTimeout], None]] = None,
    ):
        if not table.frozen:
            raise ValueError("TransitionTable must be frozen before instances start")

        self.persistence_id = persistence_id
        self.event_log = event_log
        self.table = table
        self.fold = fold
        self.initial_state = initial_state
        self.initial_data = initial_data

        self.timer = StateTimer(scheduler or ThreadingScheduler())
        self.timeout_sink = timeout_sink or self.deliver_timeout

        self._observers: List[TransitionObserver] = list(observers)
        self._lock = threading.RLock()

        # 상태
        self._state = initial_state
        self._data = initial_data
        self._sequence_nr = 0
        self._timeout_seconds: Optional[float] = None  # 현재 state의 미결 for_max
        self._running = False
        self._torn_down = False

    # ========== Lifecycle ==========

    def start(self) -> "PersistentFSM":
        """
        Journal replay로 (state, data) 복원 후 live 이벤트 수신 시작

        - 최신 snapshot → 이후 레코드만 replay
        - 마지막 레코드 (없으면 snapshot)의 timeout_seconds가 있으면 timer 재-arm
        - Recovery 중 observer 전이 알림 없음
        """
        with self._lock:
            if self._running:
                return self

            state = self.initial_state
            data = self.initial_data
            sequence_nr = 0
            pending_timeout: Optional[float] = None

            snapshot = self.event_log.read_latest_snapshot(self.persistence_id)
            if snapshot is not None:
                state = snapshot.state
                data = snapshot.data
                sequence_nr = snapshot.sequence_nr
                pending_timeout = snapshot.timeout_seconds

            replayed = 0
            for entry in self.event_log.read_all(self.persistence_id, sequence_nr + 1):
                if entry.sequence_nr <= sequence_nr:
                    logger.warning(
                        f"[FSM] {self.persistence_id} skipping out-of-order record seq={entry.sequence_nr}"
                    )
                    continue
                if entry.event is not None:
                    data = self.fold(entry.event, data)
                state = entry.state
                sequence_nr = entry.sequence_nr
                pending_timeout = entry.timeout_seconds
                replayed += 1

            self._state = state
            self._data = data
            self._sequence_nr = sequence_nr
            self._timeout_seconds = pending_timeout
            self._running = True
            self._torn_down = False

            if pending_timeout is not None:
                self.timer.arm(pending_timeout, state, self._on_timer_fire)

            logger.info(
                f"[FSM] {self.persistence_id} recovered: state={state.value}, "
                f"seq={sequence_nr}, replayed={replayed}, snapshot={snapshot is not None}"
            )
            self._notify(lambda o: o.on_recovered(self.persistence_id, state, data, sequence_nr))
            return self

    def stop(self) -> None:
        """명시적 정지 (timer 취소). 재사용하려면 start() 다시 호출"""
        with self._lock:
            self._running = False
            self.timer.cancel()

    def _teardown(self):
        self._running = False
        self._torn_down = True
        self.timer.cancel()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_torn_down(self) -> bool:
        return self._torn_down

    # ========== Observers ==========

    def subscribe(self, observer: TransitionObserver) -> None:
        """observer 등록 + 현재 상태 즉시 통지"""
        with self._lock:
            self._observers.append(observer)
            state = self._state
        self._safe_call(observer, lambda o: o.on_current_state(self.persistence_id, state))

    def unsubscribe(self, observer: TransitionObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _notify(self, call: Callable[[TransitionObserver], None]):
        for observer in list(self._observers):
            self._safe_call(observer, call)

    def _safe_call(self, observer: TransitionObserver, call: Callable[[TransitionObserver], None]):
        try:
            call(observer)
        except Exception:
            logger.exception(f"[FSM] observer {type(observer).__name__} failed ({self.persistence_id})")

    # ========== Observation ==========

    @property
    def current_state(self) -> RequestState:
        with self._lock:
            self._ensure_running()
            return self._state

    @property
    def current_data(self) -> RequestData:
        with self._lock:
            self._ensure_running()
            return self._data

    @property
    def last_sequence_nr(self) -> int:
        return self._sequence_nr

    def _ensure_running(self):
        if not self._running:
            reason = "torn down" if self._torn_down else "not started"
            raise InstanceUnavailable(f"Instance {self.persistence_id} is {reason}")

    # ========== Event Handling ==========

    def handle(self, event: RequestEvent) -> HandleResult:
        """
        이벤트 1건 처리

        Raises:
            InstanceUnavailable: teardown/미시작 인스턴스
        """
        with self._lock:
            self._ensure_running()

            state = self._state
            data = self._data

            if isinstance(event, StateTimeout):
                if event.state != state or not self.timer.consume(event):
                    logger.debug(
                        f"[FSM] {self.persistence_id} stale timeout for {event.state.value} "
                        f"(gen={event.generation}) in {state.value}"
                    )
                    return HandleResult(HandleStatus.STALE_TIMEOUT, state, data, event=event)

            rule = self.table.lookup(state, event.kind)
            if rule is None:
                error = UnhandledEvent(state, event)
                logger.warning(f"[FSM] {self.persistence_id} {error}")
                self._notify(lambda o: o.on_unhandled(self.persistence_id, state, event))
                return HandleResult(HandleStatus.UNHANDLED, state, data, event=event, error=error)

            try:
                outcome = rule.handler(event, data)
                new_data = self.fold(outcome.domain_event, data) if outcome.domain_event is not None else data
            except Exception as e:
                return self._fault(state, data, event, e)

            if outcome.is_stay and outcome.domain_event is None:
                status = HandleStatus.IGNORED if rule.is_catch_all else HandleStatus.STAYED
                if rule.is_catch_all:
                    self._notify(lambda o: o.on_ignored(self.persistence_id, state, event))
                return HandleResult(status, state, data, event=event)

            next_state = state if outcome.is_stay else outcome.next_state

            # Write-ahead: snapshot → append → commit
            try:
                if outcome.snapshot_first:
                    self.event_log.write_snapshot(
                        self.persistence_id, state, data, self._sequence_nr, self._timeout_seconds
                    )
                timeout = outcome.timeout_seconds
                if timeout is None and outcome.is_stay:
                    # stay는 진행 중인 timer 유지
                    timeout = self._timeout_seconds
                entry = JournalEntry(
                    sequence_nr=self._sequence_nr + 1,
                    state=next_state,
                    event=outcome.domain_event,
                    timeout_seconds=timeout,
                )
                self.event_log.append(self.persistence_id, entry)
            except PersistenceFailure as e:
                logger.error(f"[FSM] {self.persistence_id} persistence failure on {event!r}: {e}")
                return HandleResult(
                    HandleStatus.PERSISTENCE_FAILURE, state, data, event=event, error=e
                )

            self._state = next_state
            self._data = new_data
            self._sequence_nr = entry.sequence_nr
            self._timeout_seconds = entry.timeout_seconds

            if outcome.timeout_seconds is not None:
                self.timer.arm(outcome.timeout_seconds, next_state, self._on_timer_fire)
            elif not outcome.is_stay:
                self.timer.cancel()

            if outcome.is_stay:
                return HandleResult(HandleStatus.STAYED, state, new_data, event=event)

            transition = Transition(
                persistence_id=self.persistence_id,
                from_state=state,
                to_state=next_state,
                event=event,
                data=new_data,
                previous_data=data,
                timeout_seconds=outcome.timeout_seconds,
            )
            self._notify(lambda o: o.on_transition(transition))

            return HandleResult(
                HandleStatus.TRANSITIONED,
                next_state,
                new_data,
                event=event,
                previous_state=state,
            )

    def _fault(self, state: RequestState, data: RequestData, event: RequestEvent, cause: Exception) -> HandleResult:
        """handler/fold 예외 → teardown (journal은 유지)"""
        if isinstance(cause, FaultInjected):
            fault = cause
        else:
            fault = FaultInjected(f"{type(cause).__name__}: {cause}")
            fault.__cause__ = cause

        logger.error(
            f"[FSM] {self.persistence_id} fault in {state.value} on {event!r}: {fault} "
            f"→ instance torn down (recover from journal)",
            exc_info=cause,
        )
        self._teardown()
        self._notify(lambda o: o.on_fault(self.persistence_id, state, fault))
        return HandleResult(HandleStatus.FAULT, state, data, event=event, error=fault)

    # ========== Timer ==========

    def _on_timer_fire(self, timeout: StateTimeout):
        self.timeout_sink(timeout)

    def deliver_timeout(self, timeout: StateTimeout) -> Optional[HandleResult]:
        """기본 timeout 전달 경로 (직접 handle)"""
        try:
            return self.handle(timeout)
        except InstanceUnavailable:
            logger.debug(f"[FSM] {self.persistence_id} timeout after teardown dropped")
            return None

    # ========== Snapshot ==========

    def snapshot_now(self) -> HandleResult:
        """
        현재 (state, data) snapshot 저장 (history truncate 없음)

        Raises:
            InstanceUnavailable: teardown/미시작 인스턴스
        """
        with self._lock:
            self._ensure_running()
            try:
                self.event_log.write_snapshot(
                    self.persistence_id, self._state, self._data, self._sequence_nr, self._timeout_seconds
                )
            except PersistenceFailure as e:
                logger.error(f"[FSM] {self.persistence_id} snapshot failed: {e}")
                return HandleResult(HandleStatus.PERSISTENCE_FAILURE, self._state, self._data, error=e)

            logger.info(f"[FSM] {self.persistence_id} snapshot saved at seq={self._sequence_nr}")
            return HandleResult(HandleStatus.SNAPSHOT_SAVED, self._state, self._data)
