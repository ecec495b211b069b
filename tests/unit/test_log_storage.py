"""
tests/unit/test_log_storage.py

Journal Storage 테스트 (JSONL, O_APPEND, fsync policy, partial line recovery)

DoD:
- append(): Single syscall write + fsync policy (always/batch/critical)
- read_all(): 순서대로 읽기 + from_sequence_nr 필터
- write_snapshot() / read_latest_snapshot(): 최신 snapshot 반환
- Crash safety: 마지막 partial line truncate, 중간 corrupt line skip
- Atomic append: write 이후 fsync 실패 → 라인 rollback

Failure-mode tests:
- partial line recovery (마지막 라인 JSON parse 실패 시 truncate)
- sequence_nr 불연속 → PersistenceFailure
- 잘못된 persistence_id → PersistenceFailure
- 중복 sequence_nr 레코드 → 먼저 기록된 것만 읽기
"""

import json
import math
import os

import pytest

from domain.errors import PersistenceFailure
from domain.events import DealerAccept, SubmitRequest
from domain.journal import JournalEntry
from domain.state import INITIAL_DATA, BidOffer, RequestData, RequestState
from infrastructure.storage.codec import entry_to_dict
from infrastructure.storage.log_storage import JsonlEventLog

PID = "Request1"

SUBMIT = JournalEntry(1, RequestState.ORDER, SubmitRequest("XS12345", BidOffer.BID), None)
ACCEPT = JournalEntry(2, RequestState.QUOTE_FIRM, DealerAccept(101.20, 3.0), 3.0)
TIMEOUT = JournalEntry(3, RequestState.QUOTE_SUBJECT, None, None)


@pytest.fixture
def temp_journal_dir(tmp_path):
    return tmp_path / "journal_root"


@pytest.fixture
def storage(temp_journal_dir):
    log = JsonlEventLog(temp_journal_dir, fsync_policy="batch", fsync_batch_size=10)
    yield log
    log.close()


def _journal_file(root):
    return root / "journal" / f"{PID}.jsonl"


# Test 1: append - JSONL 1줄 = 레코드 1개
def test_append_writes_one_jsonl_line_per_entry(storage, temp_journal_dir):
    storage.append(PID, SUBMIT)
    storage.append(PID, ACCEPT)

    with open(_journal_file(temp_journal_dir), "r") as f:
        lines = f.readlines()

    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["sequence_nr"] == 1
    assert first["state"] == "Order"
    assert first["event"] == {"kind": "SubmitRequest", "isin": "XS12345", "side": "Bid"}
    assert first["schema_version"] == "1.0"
    assert storage.write_syscall_count == 2


# Test 2: read_all - 순서 유지 + 필터
def test_read_all_returns_entries_in_order(storage):
    for entry in (SUBMIT, ACCEPT, TIMEOUT):
        storage.append(PID, entry)

    assert list(storage.read_all(PID)) == [SUBMIT, ACCEPT, TIMEOUT]
    assert list(storage.read_all(PID, from_sequence_nr=3)) == [TIMEOUT]
    assert list(storage.read_all("Unknown")) == []


def test_journal_survives_reopen(storage, temp_journal_dir):
    storage.append(PID, SUBMIT)
    storage.append(PID, ACCEPT)
    storage.close()

    reopened = JsonlEventLog(temp_journal_dir)
    try:
        assert reopened.highest_sequence_nr(PID) == 2
        reopened.append(PID, TIMEOUT)
        assert [e.sequence_nr for e in reopened.read_all(PID)] == [1, 2, 3]
    finally:
        reopened.close()


# Test 3: partial line recovery
def test_partial_last_line_is_truncated(storage, temp_journal_dir):
    """
    Failure-mode test: 쓰기 도중 crash로 마지막 라인이 잘렸을 때
    → 읽기 시 무시 + 파일에서 제거, 다음 append는 정상
    """
    storage.append(PID, SUBMIT)
    storage.append(PID, ACCEPT)
    storage.close()

    with open(_journal_file(temp_journal_dir), "a") as f:
        f.write('{"schema_version": "1.0", "sequence_nr": 3, "sta')

    recovered = JsonlEventLog(temp_journal_dir)
    try:
        assert list(recovered.read_all(PID)) == [SUBMIT, ACCEPT]

        with open(_journal_file(temp_journal_dir), "r") as f:
            assert len(f.readlines()) == 2

        recovered.append(PID, TIMEOUT)
        assert list(recovered.read_all(PID))[-1] == TIMEOUT
    finally:
        recovered.close()


def test_corrupt_middle_line_is_skipped(storage, temp_journal_dir):
    storage.append(PID, SUBMIT)
    storage.close()

    with open(_journal_file(temp_journal_dir), "a") as f:
        f.write("not json\n")
        f.write(json.dumps(entry_to_dict(ACCEPT)) + "\n")

    reopened = JsonlEventLog(temp_journal_dir)
    try:
        assert list(reopened.read_all(PID)) == [SUBMIT, ACCEPT]
        assert reopened.highest_sequence_nr(PID) == 2
    finally:
        reopened.close()


# Test 4: sequence 불연속
def test_non_contiguous_sequence_is_rejected(storage):
    with pytest.raises(PersistenceFailure):
        storage.append(PID, ACCEPT)

    storage.append(PID, SUBMIT)
    with pytest.raises(PersistenceFailure):
        storage.append(PID, SUBMIT)


def test_invalid_persistence_id_is_rejected(storage):
    with pytest.raises(PersistenceFailure):
        storage.append("../escape", SUBMIT)


# Test 5: fsync policy
def test_fsync_policy_always(temp_journal_dir):
    log = JsonlEventLog(temp_journal_dir, fsync_policy="always")
    try:
        for entry in (SUBMIT, ACCEPT, TIMEOUT):
            log.append(PID, entry)
        assert log.fsync_count == 3
    finally:
        log.close()


def test_fsync_policy_batch(temp_journal_dir):
    log = JsonlEventLog(temp_journal_dir, fsync_policy="batch", fsync_batch_size=2)
    try:
        for entry in (SUBMIT, ACCEPT, TIMEOUT):
            log.append(PID, entry)
        # 2번째 append에서 1회
        assert log.fsync_count == 1
    finally:
        log.close()


def test_fsync_policy_critical_syncs_domain_events_only(temp_journal_dir):
    """
    critical: domain event 레코드 즉시 fsync, control 레코드는 batch
    """
    log = JsonlEventLog(temp_journal_dir, fsync_policy="critical", fsync_batch_size=10)
    try:
        log.append(PID, SUBMIT)
        log.append(PID, ACCEPT)
        assert log.fsync_count == 2

        log.append(PID, TIMEOUT)
        assert log.fsync_count == 2
    finally:
        log.close()


def test_unknown_fsync_policy_is_rejected(temp_journal_dir):
    with pytest.raises(ValueError):
        JsonlEventLog(temp_journal_dir, fsync_policy="periodic")


# Test 6: snapshot
def test_latest_snapshot_wins(storage):
    assert storage.read_latest_snapshot(PID) is None

    storage.write_snapshot(PID, RequestState.QUOTE_FIRM, RequestData("XS12345", BidOffer.BID, 101.20), 2)
    storage.write_snapshot(PID, RequestState.QUOTE_SUBJECT_ACCEPTED, RequestData("XS12345", BidOffer.BID, 99.20), 5)

    snapshot = storage.read_latest_snapshot(PID)
    assert snapshot.state == RequestState.QUOTE_SUBJECT_ACCEPTED
    assert snapshot.data.price == 99.20
    assert snapshot.sequence_nr == 5


def test_snapshot_keeps_unset_price(storage):
    storage.write_snapshot(PID, RequestState.NEW, INITIAL_DATA, 0)

    snapshot = storage.read_latest_snapshot(PID)

    assert math.isnan(snapshot.data.price)
    assert snapshot.data.same_as(INITIAL_DATA)


def test_snapshot_keeps_pending_timeout(storage):
    storage.write_snapshot(PID, RequestState.QUOTE_FIRM, RequestData("XS12345", BidOffer.BID, 101.20), 2, 3.0)
    storage.write_snapshot(PID, RequestState.QUOTE_SUBJECT, RequestData("XS12345", BidOffer.BID, 101.20), 3)

    reopened = JsonlEventLog(storage.journal_dir)
    try:
        assert reopened.read_latest_snapshot(PID).timeout_seconds is None

        reopened.write_snapshot(PID, RequestState.QUOTE_FIRM, RequestData("XS12345", BidOffer.BID, 101.20), 2, 3.0)
        assert reopened.read_latest_snapshot(PID).timeout_seconds == 3.0
    finally:
        reopened.close()


# Test 7: 실패한 append는 journal에 남지 않는다
def _fsync_failing_on(monkeypatch, failing_call):
    real_fsync = os.fsync
    calls = {"n": 0}

    def flaky_fsync(fd):
        calls["n"] += 1
        if calls["n"] == failing_call:
            raise OSError(5, "Input/output error")
        return real_fsync(fd)

    monkeypatch.setattr(os, "fsync", flaky_fsync)


def test_failed_fsync_rolls_back_appended_line(temp_journal_dir, monkeypatch):
    """
    Given: fsync_policy=always, 2번째 fsync (ACCEPT) 실패 주입
    When: SUBMIT → ACCEPT (실패) → seq 2 control 레코드
    Then: ACCEPT 라인은 파일에서 제거, seq 2는 재사용 가능
          read_all()은 SUBMIT + control 레코드만 반환 (중복 seq 없음)
    """
    log = JsonlEventLog(temp_journal_dir, fsync_policy="always")
    _fsync_failing_on(monkeypatch, 2)
    try:
        log.append(PID, SUBMIT)

        with pytest.raises(PersistenceFailure):
            log.append(PID, ACCEPT)

        with open(_journal_file(temp_journal_dir), "r") as f:
            assert len(f.readlines()) == 1
        assert log.highest_sequence_nr(PID) == 1

        cancelled = JournalEntry(2, RequestState.CANCELLED, None, None)
        log.append(PID, cancelled)

        assert list(log.read_all(PID)) == [SUBMIT, cancelled]
    finally:
        log.close()


def test_failed_rollback_forces_rescan(temp_journal_dir, monkeypatch):
    """
    Given: fsync 실패 + ftruncate도 실패 (ACCEPT 라인이 파일에 남음)
    When: 다음 append
    Then: 파일 재스캔으로 last sequence = 2 → seq 2 재사용은 PersistenceFailure
    """
    log = JsonlEventLog(temp_journal_dir, fsync_policy="always")
    _fsync_failing_on(monkeypatch, 2)

    def failing_ftruncate(fd, length):
        raise OSError(5, "Input/output error")

    monkeypatch.setattr(os, "ftruncate", failing_ftruncate)
    try:
        log.append(PID, SUBMIT)
        with pytest.raises(PersistenceFailure):
            log.append(PID, ACCEPT)

        with pytest.raises(PersistenceFailure):
            log.append(PID, JournalEntry(2, RequestState.CANCELLED, None, None))
        assert log.highest_sequence_nr(PID) == 2
    finally:
        log.close()


def test_non_increasing_sequence_is_skipped_on_read(storage, temp_journal_dir):
    """
    Failure-mode test: 같은 sequence_nr가 두 번 기록된 journal
    → 먼저 기록된 레코드만 반환
    """
    storage.append(PID, SUBMIT)
    storage.append(PID, ACCEPT)
    storage.close()

    with open(_journal_file(temp_journal_dir), "a") as f:
        f.write(json.dumps(entry_to_dict(JournalEntry(2, RequestState.CANCELLED, None, None))) + "\n")
        f.write(json.dumps(entry_to_dict(TIMEOUT)) + "\n")

    reopened = JsonlEventLog(temp_journal_dir)
    try:
        assert list(reopened.read_all(PID)) == [SUBMIT, ACCEPT, TIMEOUT]
    finally:
        reopened.close()
