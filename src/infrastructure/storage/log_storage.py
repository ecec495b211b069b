"""
src/infrastructure/storage/log_storage.py

Journal Storage (JSONL, O_APPEND, fsync policy, partial line recovery)

DoD:
- append(): Single syscall write (os.write) + fsync policy
- read_all(): persistence_id journal 읽기 + partial line recovery
- write_snapshot(): snapshot JSONL append + 즉시 fsync
- Durability policy: always / batch (N lines) / critical (domain event 즉시)
- Crash safety: 마지막 partial line truncate
- Atomic append: write 이후 실패 (fsync 등) → ftruncate로 해당 레코드 제거

Layout:
    {journal_dir}/journal/{persistence_id}.jsonl
    {journal_dir}/snapshots/{persistence_id}.jsonl
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from domain.errors import PersistenceFailure
from domain.ids import validate_persistence_id
from domain.journal import JournalEntry, SnapshotRecord
from domain.state import RequestData, RequestState
from infrastructure.storage.codec import (
    entry_from_dict,
    entry_to_dict,
    snapshot_from_dict,
    snapshot_to_dict,
)
from interfaces.event_log import IEventLog

logger = logging.getLogger(__name__)

FSYNC_POLICIES = ("always", "batch", "critical")


class JsonlEventLog(IEventLog):
    """
    JSONL EventLog

    핵심 원칙:
    - Single syscall write per line (os.write)
    - Durable append: fsync policy (always/batch/critical)
    - Crash safety: Partial line recovery (마지막 라인 JSON parse 실패 시 truncate)
    - Concurrency: persistence_id별 단일 writer (fd 상시 유지, id별 lock)
    """

    def __init__(
        self,
        journal_dir: Path,
        fsync_policy: str = "batch",
        fsync_batch_size: int = 10,
    ):
        """
        Args:
            journal_dir: journal 루트 디렉토리
            fsync_policy: fsync 정책 ("always", "batch", "critical")
            fsync_batch_size: batch 정책일 때 fsync 간격 (라인 수)
        """
        if fsync_policy not in FSYNC_POLICIES:
            raise ValueError(f"Unknown fsync_policy: {fsync_policy}")

        self.journal_dir = Path(journal_dir)
        self.entries_dir = self.journal_dir / "journal"
        self.snapshots_dir = self.journal_dir / "snapshots"
        self.entries_dir.mkdir(parents=True, exist_ok=True)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)

        self.fsync_policy = fsync_policy
        self.fsync_batch_size = fsync_batch_size

        # 상태 (persistence_id별)
        self._fds: Dict[str, int] = {}
        self._last_sequence: Dict[str, int] = {}
        self._append_counts: Dict[str, int] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        # 디버그/테스트용 카운터
        self.fsync_count = 0
        self.write_syscall_count = 0

    def _lock_for(self, persistence_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(persistence_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[persistence_id] = lock
            return lock

    def _journal_path(self, persistence_id: str) -> Path:
        if not validate_persistence_id(persistence_id):
            raise PersistenceFailure(f"Invalid persistence_id: {persistence_id!r}")
        return self.entries_dir / f"{persistence_id}.jsonl"

    def _snapshot_path(self, persistence_id: str) -> Path:
        if not validate_persistence_id(persistence_id):
            raise PersistenceFailure(f"Invalid persistence_id: {persistence_id!r}")
        return self.snapshots_dir / f"{persistence_id}.jsonl"

    def _open_journal(self, persistence_id: str) -> int:
        """journal 파일 열기 (O_APPEND, lazy)"""
        fd = self._fds.get(persistence_id)
        if fd is None:
            flags = os.O_APPEND | os.O_CREAT | os.O_WRONLY
            fd = os.open(self._journal_path(persistence_id), flags, 0o644)
            self._fds[persistence_id] = fd
        return fd

    def append(self, persistence_id: str, entry: JournalEntry) -> None:
        """
        JournalEntry를 JSONL로 append한다.

        Raises:
            PersistenceFailure: sequence 불연속 또는 OSError
        """
        with self._lock_for(persistence_id):
            last = self._last_sequence.get(persistence_id)
            if last is None:
                last = self._scan_last_sequence(persistence_id)
            if entry.sequence_nr != last + 1:
                raise PersistenceFailure(
                    f"Non-contiguous sequence_nr for {persistence_id}: "
                    f"expected {last + 1}, got {entry.sequence_nr}"
                )

            line = json.dumps(entry_to_dict(entry)) + "\n"

            fd = None
            offset = None
            try:
                fd = self._open_journal(persistence_id)
                offset = os.fstat(fd).st_size
                # Single syscall write
                os.write(fd, line.encode("utf-8"))
                self.write_syscall_count += 1
                self._apply_fsync_policy(persistence_id, fd, is_critical=entry.event is not None)
            except OSError as e:
                if offset is not None:
                    self._rollback_append(persistence_id, fd, offset)
                self._close_fd(persistence_id)
                raise PersistenceFailure(f"Journal append failed for {persistence_id}: {e}") from e

            self._last_sequence[persistence_id] = entry.sequence_nr

    def _rollback_append(self, persistence_id: str, fd: int, offset: int):
        """실패한 append의 바이트 제거 (레코드는 전부 남거나 전혀 남지 않는다)"""
        try:
            os.ftruncate(fd, offset)
        except OSError as e:
            # 파일 상태를 알 수 없음 → 다음 append에서 재스캔
            self._last_sequence.pop(persistence_id, None)
            logger.error(f"[JOURNAL] Rollback failed for {persistence_id} at offset {offset}: {e}")

    def _apply_fsync_policy(self, persistence_id: str, fd: int, is_critical: bool):
        if self.fsync_policy == "always" or (self.fsync_policy == "critical" and is_critical):
            os.fsync(fd)
            self.fsync_count += 1
            self._append_counts[persistence_id] = 0
            return

        # batch (critical 정책의 control 레코드도 batch로 처리)
        count = self._append_counts.get(persistence_id, 0) + 1
        if count >= self.fsync_batch_size:
            os.fsync(fd)
            self.fsync_count += 1
            count = 0
        self._append_counts[persistence_id] = count

    def read_all(self, persistence_id: str, from_sequence_nr: int = 1) -> Iterator[JournalEntry]:
        """
        journal 레코드를 순서대로 읽는다 (partial line recovery 포함).

        sequence_nr가 증가하지 않는 레코드는 건너뛴다 (먼저 기록된 레코드 유지).
        """
        with self._lock_for(persistence_id):
            payloads = self._read_lines(self._journal_path(persistence_id))

        entries: List[JournalEntry] = []
        last_seq = 0
        for payload in payloads:
            try:
                entry = entry_from_dict(payload)
            except ValueError as e:
                logger.warning(f"[JOURNAL] Skipping invalid record in {persistence_id}: {e}")
                continue
            if entry.sequence_nr <= last_seq:
                logger.warning(
                    f"[JOURNAL] Skipping non-increasing sequence_nr {entry.sequence_nr} "
                    f"(after {last_seq}) in {persistence_id}"
                )
                continue
            last_seq = entry.sequence_nr
            if entry.sequence_nr >= from_sequence_nr:
                entries.append(entry)
        return iter(entries)

    def write_snapshot(
        self,
        persistence_id: str,
        state: RequestState,
        data: RequestData,
        sequence_nr: int,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """Snapshot append + 즉시 fsync"""
        record = SnapshotRecord(
            state=state, data=data, sequence_nr=sequence_nr, timeout_seconds=timeout_seconds
        )
        line = json.dumps(snapshot_to_dict(record)) + "\n"

        with self._lock_for(persistence_id):
            path = self._snapshot_path(persistence_id)
            try:
                fd = os.open(path, os.O_APPEND | os.O_CREAT | os.O_WRONLY, 0o644)
                try:
                    os.write(fd, line.encode("utf-8"))
                    self.write_syscall_count += 1
                    os.fsync(fd)
                    self.fsync_count += 1
                finally:
                    os.close(fd)
            except OSError as e:
                raise PersistenceFailure(f"Snapshot write failed for {persistence_id}: {e}") from e

    def read_latest_snapshot(self, persistence_id: str) -> Optional[SnapshotRecord]:
        with self._lock_for(persistence_id):
            payloads = self._read_lines(self._snapshot_path(persistence_id))

        for payload in reversed(payloads):
            try:
                return snapshot_from_dict(payload)
            except ValueError as e:
                logger.warning(f"[JOURNAL] Skipping invalid snapshot in {persistence_id}: {e}")
        return None

    def highest_sequence_nr(self, persistence_id: str) -> int:
        with self._lock_for(persistence_id):
            last = self._last_sequence.get(persistence_id)
            if last is None:
                last = self._scan_last_sequence(persistence_id)
            return last

    def _scan_last_sequence(self, persistence_id: str) -> int:
        """lock 보유 상태에서 호출"""
        last = 0
        for payload in self._read_lines(self._journal_path(persistence_id)):
            seq = payload.get("sequence_nr")
            if isinstance(seq, int) and seq > last:
                last = seq
        self._last_sequence[persistence_id] = last
        return last

    def _read_lines(self, file_path: Path) -> List[Dict[str, Any]]:
        if not file_path.exists():
            return []

        payloads: List[Dict[str, Any]] = []
        valid_lines: List[str] = []

        with open(file_path, "r") as f:
            lines = f.readlines()

        for i, line in enumerate(lines):
            try:
                payloads.append(json.loads(line))
                valid_lines.append(line)
            except json.JSONDecodeError:
                if i == len(lines) - 1:
                    # 마지막 partial line → truncate
                    logger.warning(f"[JOURNAL] Truncating partial line in {file_path.name}")
                    self._truncate_partial_line(file_path, valid_lines)
                    break
                # 중간 라인 파싱 실패 → 유실로 간주하고 진행
                logger.warning(f"[JOURNAL] Corrupt line {i + 1} in {file_path.name}")
                continue

        return payloads

    def _truncate_partial_line(self, file_path: Path, valid_lines: List[str]):
        """마지막 partial line을 제거 (truncate)"""
        persistence_id = file_path.stem
        # 열린 append fd는 닫고 다시 lazy open
        if file_path.parent == self.entries_dir:
            self._close_fd(persistence_id)
        with open(file_path, "w") as f:
            f.writelines(valid_lines)

    def _close_fd(self, persistence_id: str):
        fd = self._fds.pop(persistence_id, None)
        if fd is not None:
            try:
                os.close(fd)
            except OSError:
                logger.warning(f"[JOURNAL] close failed for {persistence_id}")

    def close(self):
        """열린 journal fd 전부 flush + close"""
        with self._registry_lock:
            ids = list(self._fds.keys())
        for persistence_id in ids:
            with self._lock_for(persistence_id):
                fd = self._fds.get(persistence_id)
                if fd is not None:
                    try:
                        os.fsync(fd)
                        self.fsync_count += 1
                    except OSError:
                        logger.warning(f"[JOURNAL] fsync on close failed for {persistence_id}")
                self._close_fd(persistence_id)
