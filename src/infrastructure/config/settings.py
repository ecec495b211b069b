"""
src/infrastructure/config/settings.py
RFQ Settings — YAML + 환경변수

SSOT:
- config/rfq.yaml: journal/timer/logging 기본값
- 환경변수 (load_dotenv 후): RFQ_JOURNAL_DIR, RFQ_FSYNC_POLICY, RFQ_LOG_LEVEL

원칙:
1. 잘못된 값 → FatalConfigError (프로세스 시작 거부, fail-fast)
2. 파일이 없으면 기본값 사용
3. 환경변수가 YAML보다 우선

Exports:
- RfqSettings
- load_settings()
"""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from domain.errors import FatalConfigError
from infrastructure.storage.log_storage import FSYNC_POLICIES

TIMER_BACKENDS = ("thread", "manual")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG_PATH = Path("config/rfq.yaml")


@dataclass(frozen=True)
class RfqSettings:
    """
    - journal_dir: journal 루트 디렉토리
    - fsync_policy: "always" | "batch" | "critical"
    - fsync_batch_size: batch 정책의 fsync 간격
    - timer_backend: "thread" | "manual"
    - log_level: logging 레벨 이름
    """
    journal_dir: Path = Path("data/journal")
    fsync_policy: str = "critical"
    fsync_batch_size: int = 10
    timer_backend: str = "thread"
    log_level: str = "INFO"

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)

    def validate(self) -> "RfqSettings":
        """
        Raises:
            FatalConfigError: 허용되지 않은 값
        """
        if self.fsync_policy not in FSYNC_POLICIES:
            raise FatalConfigError(
                f"journal.fsync_policy must be one of {FSYNC_POLICIES}, got {self.fsync_policy!r}"
            )
        if self.fsync_batch_size < 1:
            raise FatalConfigError(f"journal.fsync_batch_size must be >= 1, got {self.fsync_batch_size}")
        if self.timer_backend not in TIMER_BACKENDS:
            raise FatalConfigError(
                f"timer.backend must be one of {TIMER_BACKENDS}, got {self.timer_backend!r}"
            )
        if self.log_level not in LOG_LEVELS:
            raise FatalConfigError(f"logging.level must be one of {LOG_LEVELS}, got {self.log_level!r}")
        return self


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise FatalConfigError(f"'{name}' section must be a mapping")
    return value


def _from_yaml(path: Path) -> RfqSettings:
    settings = RfqSettings()
    if not path.exists():
        return settings

    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise FatalConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise FatalConfigError(f"{path} must contain a mapping")

    journal = _section(raw, "journal")
    timer = _section(raw, "timer")
    log = _section(raw, "logging")

    try:
        return replace(
            settings,
            journal_dir=Path(journal.get("dir", settings.journal_dir)),
            fsync_policy=str(journal.get("fsync_policy", settings.fsync_policy)),
            fsync_batch_size=int(journal.get("fsync_batch_size", settings.fsync_batch_size)),
            timer_backend=str(timer.get("backend", settings.timer_backend)),
            log_level=str(log.get("level", settings.log_level)).upper(),
        )
    except (TypeError, ValueError) as e:
        raise FatalConfigError(f"Invalid value in {path}: {e}") from e


def _apply_env(settings: RfqSettings) -> RfqSettings:
    journal_dir = os.getenv("RFQ_JOURNAL_DIR")
    fsync_policy = os.getenv("RFQ_FSYNC_POLICY")
    log_level = os.getenv("RFQ_LOG_LEVEL")

    if journal_dir:
        settings = replace(settings, journal_dir=Path(journal_dir))
    if fsync_policy:
        settings = replace(settings, fsync_policy=fsync_policy.lower())
    if log_level:
        settings = replace(settings, log_level=log_level.upper())
    return settings


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    use_dotenv: bool = True,
) -> RfqSettings:
    """
    설정 로드 (YAML → 환경변수 override → 검증)

    Args:
        config_path: YAML 경로 (기본: config/rfq.yaml)
        use_dotenv: True면 .env를 먼저 로드

    Raises:
        FatalConfigError: 잘못된 설정
    """
    if use_dotenv:
        load_dotenv()

    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    settings = _apply_env(_from_yaml(path))
    return settings.validate()
