"""
src/infrastructure/logging/transition_logger.py
Transition Logger — 전이 내러티브 로그 + 구조화 레코드

원칙:
1. 전이 결정 로직과 분리 (TransitionObserver로만 연결)
2. 레코드: persistence_id + from/to + event + data snapshot
3. Schema validation: 필수 필드 누락 시 TransitionLogValidationError

Exports:
- build_transition_record(): 전이 레코드 생성 (schema 검증 포함)
- validate_transition_schema(): 필수 필드 검증
- describe_transition(): 사람이 읽는 한 줄 메시지
- LoggingTransitionObserver: logging 모듈로 출력하는 observer
- JsonlTransitionAudit: 전이 레코드를 JSONL 파일에 남기는 observer
- TransitionLogValidationError
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from application.observers import Transition, TransitionObserver
from domain.errors import RfqError
from domain.events import EventKind, RequestEvent
from domain.state import RequestData, RequestState
from infrastructure.storage.codec import data_to_dict, event_to_dict

logger = logging.getLogger(__name__)


class TransitionLogValidationError(Exception):
    """Transition log schema validation 실패"""

    pass


REQUIRED_FIELDS = ["timestamp", "persistence_id", "from_state", "to_state", "event", "data"]


def build_transition_record(timestamp: float, transition: Transition) -> Dict[str, Any]:
    """
    전이 레코드 생성

    Args:
        timestamp: 전이 시각 (UNIX timestamp)
        transition: 확정된 전이

    Returns:
        record: {"timestamp", "persistence_id", "from_state", "to_state",
                 "event", "data", "timeout_seconds"}
    """
    record = {
        "timestamp": timestamp,
        "persistence_id": transition.persistence_id,
        "from_state": transition.from_state.identifier,
        "to_state": transition.to_state.identifier,
        "event": event_to_dict(transition.event),
        "data": data_to_dict(transition.data),
        "timeout_seconds": transition.timeout_seconds,
    }

    validate_transition_schema(record)

    return record


def validate_transition_schema(record: Dict[str, Any]) -> None:
    """
    Raises:
        TransitionLogValidationError: 필수 필드 누락 또는 타입 오류
    """
    for field in REQUIRED_FIELDS:
        if field not in record:
            raise TransitionLogValidationError(f"Missing required field: {field}")

    if not isinstance(record.get("event"), dict):
        raise TransitionLogValidationError("event must be a dict")

    if not isinstance(record.get("data"), dict):
        raise TransitionLogValidationError("data must be a dict")


def describe_transition(transition: Transition) -> str:
    """전이 → 한 줄 메시지"""
    event = transition.event
    data = transition.data
    kind = event.kind

    if kind == EventKind.SUBMIT_REQUEST:
        return f"Client has submitted a request, isin={event.isin}, type={event.side.value}"
    if kind == EventKind.DEALER_ACCEPT:
        return (
            f"Dealer has accepted, isin={data.isin}, price={event.price:f}, "
            f"wiretime={event.wiretime_seconds:g} seconds"
        )
    if kind == EventKind.DEALER_COUNTER:
        return f"Dealer countered, isin={data.isin}, price={event.price:f}"
    if kind == EventKind.DEALER_REJECT:
        return f"Dealer has rejected, isin={data.isin}"
    if kind == EventKind.STATE_TIMEOUT:
        return f"Wiretime has expired, isin={data.isin}"
    if kind == EventKind.CUSTOMER_ACCEPT:
        if transition.to_state == RequestState.DONE:
            return f"Client accepted - deal done, isin={data.isin}, price={data.price:f}"
        return f"Client accepted subject quote, isin={data.isin}, price={data.price:f}"

    return f"{kind.value}, isin={data.isin}"


class LoggingTransitionObserver(TransitionObserver):
    """
    logging 모듈 출력 observer

    Args:
        log: 출력 logger (기본: module logger)
        clock: timestamp 함수 (기본: time.time)
        keep_records: True면 build_transition_record 결과를 records에 보관
    """

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], float]] = None,
        keep_records: bool = False,
    ):
        self.log = log or logger
        self.clock = clock or time.time
        self.keep_records = keep_records
        self.records: List[Dict[str, Any]] = []

    def on_current_state(self, persistence_id: str, state: RequestState) -> None:
        self.log.info(f"[{persistence_id}] Current state={state.identifier}")

    def on_transition(self, transition: Transition) -> None:
        self.log.info(
            f"[{transition.persistence_id}] Current state={transition.from_state.identifier} "
            f"--- {describe_transition(transition)}"
        )
        if self.keep_records:
            self.records.append(build_transition_record(self.clock(), transition))

    def on_ignored(self, persistence_id: str, state: RequestState, event: RequestEvent) -> None:
        self.log.info(f"[{persistence_id}] System event, {event!r} (state={state.identifier})")

    def on_unhandled(self, persistence_id: str, state: RequestState, event: RequestEvent) -> None:
        self.log.warning(f"[{persistence_id}] Unhandled event {event!r} in state={state.identifier}")

    def on_fault(self, persistence_id: str, state: RequestState, error: RfqError) -> None:
        self.log.error(f"[{persistence_id}] Fault in state={state.identifier}: {error}")

    def on_recovered(
        self,
        persistence_id: str,
        state: RequestState,
        data: RequestData,
        sequence_nr: int,
    ) -> None:
        self.log.info(
            f"[{persistence_id}] Recovered state={state.identifier}, isin={data.isin}, "
            f"price={data.price:f}, seq={sequence_nr}"
        )


class JsonlTransitionAudit(TransitionObserver):
    """
    전이 레코드 JSONL audit sink

    - 전이 1건 = build_transition_record() 1줄 (O_APPEND, single write)
    - 쓰기 실패는 logging만 (전이는 이미 journal에 확정됨)
    """

    def __init__(self, path: Union[str, Path], clock: Optional[Callable[[], float]] = None):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock or time.time
        self._lock = threading.Lock()

    def on_transition(self, transition: Transition) -> None:
        record = build_transition_record(self.clock(), transition)
        line = json.dumps(record) + "\n"
        with self._lock:
            try:
                fd = os.open(self.path, os.O_APPEND | os.O_CREAT | os.O_WRONLY, 0o644)
                try:
                    os.write(fd, line.encode("utf-8"))
                finally:
                    os.close(fd)
            except OSError as e:
                logger.error(f"[AUDIT] transition record write failed ({self.path}): {e}")

    def read_records(self) -> List[Dict[str, Any]]:
        """audit 파일의 레코드 전체 (파일 없으면 빈 list)"""
        if not self.path.exists():
            return []
        with open(self.path, "r") as f:
            return [json.loads(line) for line in f if line.strip()]
