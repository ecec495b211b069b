"""
Bootstrap — RfqSettings → EventLog / Scheduler / Registry 구성
"""

import logging
from typing import Iterable

from application.observers import TransitionObserver
from application.registry import RequestRegistry
from application.timer import ManualScheduler, ThreadingScheduler, TimerScheduler
from infrastructure.config.settings import RfqSettings
from infrastructure.storage.log_storage import JsonlEventLog

logger = logging.getLogger(__name__)


def build_event_log(settings: RfqSettings) -> JsonlEventLog:
    return JsonlEventLog(
        journal_dir=settings.journal_dir,
        fsync_policy=settings.fsync_policy,
        fsync_batch_size=settings.fsync_batch_size,
    )


def build_scheduler(settings: RfqSettings) -> TimerScheduler:
    if settings.timer_backend == "manual":
        return ManualScheduler()
    return ThreadingScheduler()


def build_registry(
    settings: RfqSettings,
    observers: Iterable[TransitionObserver] = (),
) -> RequestRegistry:
    logger.info(
        f"[BOOTSTRAP] journal={settings.journal_dir} fsync={settings.fsync_policy} "
        f"timer={settings.timer_backend}"
    )
    return RequestRegistry(
        event_log=build_event_log(settings),
        scheduler=build_scheduler(settings),
        observers=observers,
    )
