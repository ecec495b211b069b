"""EventLog Interface"""

from abc import ABC, abstractmethod
from typing import Iterator, Optional

from domain.journal import JournalEntry, SnapshotRecord
from domain.state import RequestData, RequestState


class IEventLog(ABC):
    """
    EventLog 인터페이스

    지위: 인스턴스 상태의 유일한 source of truth

    책임:
    - persistence_id별 순서 보장 append-only journal
    - snapshot 저장/조회 (history는 절대 truncate 하지 않음)

    실패 계약:
    - 쓰기 실패 → PersistenceFailure raise (호출자는 상태 변경 금지)

    Implementations: InMemoryEventLog (test), JsonlEventLog (file)
    """

    @abstractmethod
    def append(self, persistence_id: str, entry: JournalEntry) -> None:
        """
        Journal에 레코드 append

        Raises:
            PersistenceFailure: 쓰기 실패 또는 sequence_nr 불연속
        """
        pass

    @abstractmethod
    def read_all(self, persistence_id: str, from_sequence_nr: int = 1) -> Iterator[JournalEntry]:
        """
        from_sequence_nr 이상의 레코드를 순서대로 반환 (재시작 가능)
        """
        pass

    @abstractmethod
    def write_snapshot(
        self,
        persistence_id: str,
        state: RequestState,
        data: RequestData,
        sequence_nr: int,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """
        Snapshot 저장 (timeout_seconds: 현재 state의 미결 timeout, 없으면 None)

        Raises:
            PersistenceFailure: 쓰기 실패
        """
        pass

    @abstractmethod
    def read_latest_snapshot(self, persistence_id: str) -> Optional[SnapshotRecord]:
        """가장 최근 snapshot (없으면 None)"""
        pass

    def highest_sequence_nr(self, persistence_id: str) -> int:
        """마지막 journal sequence (없으면 0)"""
        last = 0
        for entry in self.read_all(persistence_id):
            last = entry.sequence_nr
        return last
