"""
src/domain/ids.py
Persistence ID 생성 및 검증

Purpose:
- persistence_id 생성 (UUID4 기반)
- persistence_id 검증 (journal 파일명으로 사용 가능해야 함)

Design Decisions:
- 길이 ≤ 64자
- 영숫자 + '-_.'만 허용 (경로 구분자/공백 금지)
- '.' 단독/'..' 금지 (디렉토리 탈출 방지)
"""

import re
import uuid

MAX_PERSISTENCE_ID_LENGTH = 64

_PERSISTENCE_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_.-]+$')


def generate_persistence_id(prefix: str = "rfq") -> str:
    """
    Persistence ID 생성

    Args:
        prefix: ID 접두어 (예: "rfq")

    Returns:
        persistence_id: {prefix}-{uuid4 hex}

    Example:
        >>> generate_persistence_id()
        "rfq-3f2b8c0e9d7a4e51a1b2c3d4e5f60718"
    """
    return f"{prefix}-{uuid.uuid4().hex}"


def validate_persistence_id(persistence_id: str) -> bool:
    """
    persistence_id 검증

    Returns:
        True: 유효한 ID
        False: 제약 위반

    Example:
        >>> validate_persistence_id("Request1")
        True
        >>> validate_persistence_id("../etc/passwd")
        False
    """
    if not persistence_id or len(persistence_id) > MAX_PERSISTENCE_ID_LENGTH:
        return False

    if persistence_id in (".", ".."):
        return False

    if not _PERSISTENCE_ID_PATTERN.match(persistence_id):
        return False

    return True
