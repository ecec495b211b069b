"""
Journal Records — 영속 레코드 정의

- JournalEntry: 전이 1회당 레코드 1개 (append-only)
- SnapshotRecord: (state, data, sequence_nr, timeout_seconds) 시점 캡처

JournalEntry 규칙:
- state: 전이 후 상태
- event: 적용된 domain event (control 전이는 None)
- timeout_seconds: for_max duration (없으면 None)

Recovery는 event만 fold하고, 마지막 레코드의 state/timeout으로 상태와 timer를 복원한다.
"""

from dataclasses import dataclass
from typing import Optional

from domain.events import RequestEvent
from domain.state import RequestData, RequestState


@dataclass(frozen=True)
class JournalEntry:
    sequence_nr: int
    state: RequestState
    event: Optional[RequestEvent] = None
    timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class SnapshotRecord:
    """
    Snapshot (빠른 복구용)

    - sequence_nr: snapshot 시점까지 반영된 마지막 journal sequence
      (이후 레코드만 replay)
    - timeout_seconds: snapshot 시점 state의 미결 for_max duration (복구 시 재-arm)
    """
    state: RequestState
    data: RequestData
    sequence_nr: int
    timeout_seconds: Optional[float] = None
