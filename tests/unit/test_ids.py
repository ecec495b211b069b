"""
tests/unit/test_ids.py
Unit tests for persistence_id generation and validation

Purpose:
- persistence_id 생성 ({prefix}-{uuid4 hex})
- persistence_id 검증 (journal 파일명으로 안전해야 함)

Test Coverage:
1. 생성 형식 + 유일성
2. 검증 (유효한 케이스)
3. 검증 (길이 초과 / 빈 문자열)
4. 검증 (경로 탈출, 잘못된 문자)
"""

import re

import pytest

from domain.ids import (
    MAX_PERSISTENCE_ID_LENGTH,
    generate_persistence_id,
    validate_persistence_id,
)


def test_generate_persistence_id_format():
    pid = generate_persistence_id("request1")

    assert re.match(r'^request1-[a-f0-9]{32}$', pid), f"persistence_id 형식 불일치: {pid}"
    assert validate_persistence_id(pid) is True


def test_generate_persistence_id_is_unique():
    ids = {generate_persistence_id() for _ in range(100)}
    assert len(ids) == 100


@pytest.mark.parametrize("pid", ["Request1", "rfq-abc_01", "a", "desk.eu-7"])
def test_valid_persistence_ids(pid):
    assert validate_persistence_id(pid) is True


def test_persistence_id_length_limit():
    assert validate_persistence_id("a" * MAX_PERSISTENCE_ID_LENGTH) is True
    assert validate_persistence_id("a" * (MAX_PERSISTENCE_ID_LENGTH + 1)) is False
    assert validate_persistence_id("") is False


@pytest.mark.parametrize("pid", [".", "..", "../etc/passwd", "a/b", "with space", "탭\t"])
def test_unsafe_persistence_ids_are_rejected(pid):
    assert validate_persistence_id(pid) is False
