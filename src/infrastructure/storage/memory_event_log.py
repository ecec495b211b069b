"""
InMemoryEventLog — 테스트용 EventLog

목적:
1. 파일 I/O 없이 journal/snapshot 계약 재현
2. 장애 주입 (append/snapshot 실패 시뮬레이션)
3. 호출 기록 (oracle 테스트용)
"""

import threading
from collections import defaultdict
from typing import Dict, Iterator, List, Optional

from domain.errors import PersistenceFailure
from domain.journal import JournalEntry, SnapshotRecord
from domain.state import RequestData, RequestState
from interfaces.event_log import IEventLog


class InMemoryEventLog(IEventLog):
    """
    In-memory journal + snapshot store

    특징:
    - persistence_id별 list (append-only)
    - fail_next_appends / fail_next_snapshots: 다음 N회 쓰기 실패
    - append_calls / snapshot_calls: 호출 기록
    """

    def __init__(self):
        self._journals: Dict[str, List[JournalEntry]] = defaultdict(list)
        self._snapshots: Dict[str, List[SnapshotRecord]] = defaultdict(list)
        self._lock = threading.Lock()

        # 장애 주입 훅 (테스트에서 설정)
        self.fail_next_appends = 0
        self.fail_next_snapshots = 0

        # 호출 기록
        self.append_calls = 0
        self.snapshot_calls = 0

    def append(self, persistence_id: str, entry: JournalEntry) -> None:
        with self._lock:
            self.append_calls += 1
            if self.fail_next_appends > 0:
                self.fail_next_appends -= 1
                raise PersistenceFailure(f"Simulated append failure for {persistence_id}")

            journal = self._journals[persistence_id]
            expected = journal[-1].sequence_nr + 1 if journal else 1
            if entry.sequence_nr != expected:
                raise PersistenceFailure(
                    f"Non-contiguous sequence_nr for {persistence_id}: "
                    f"expected {expected}, got {entry.sequence_nr}"
                )
            journal.append(entry)

    def read_all(self, persistence_id: str, from_sequence_nr: int = 1) -> Iterator[JournalEntry]:
        with self._lock:
            entries = list(self._journals.get(persistence_id, ()))
        return iter([e for e in entries if e.sequence_nr >= from_sequence_nr])

    def write_snapshot(
        self,
        persistence_id: str,
        state: RequestState,
        data: RequestData,
        sequence_nr: int,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        with self._lock:
            self.snapshot_calls += 1
            if self.fail_next_snapshots > 0:
                self.fail_next_snapshots -= 1
                raise PersistenceFailure(f"Simulated snapshot failure for {persistence_id}")
            self._snapshots[persistence_id].append(
                SnapshotRecord(
                    state=state, data=data, sequence_nr=sequence_nr, timeout_seconds=timeout_seconds
                )
            )

    def read_latest_snapshot(self, persistence_id: str) -> Optional[SnapshotRecord]:
        with self._lock:
            snapshots = self._snapshots.get(persistence_id)
            return snapshots[-1] if snapshots else None

    def entries(self, persistence_id: str) -> List[JournalEntry]:
        """테스트용: journal 전체 복사본"""
        return list(self.read_all(persistence_id))

    def snapshots(self, persistence_id: str) -> List[SnapshotRecord]:
        """테스트용: snapshot 전체 복사본"""
        with self._lock:
            return list(self._snapshots.get(persistence_id, ()))
