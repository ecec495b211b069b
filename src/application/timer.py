"""
src/application/timer.py
State Timer — 인스턴스별 단일 state timeout

SSOT:
- arm(duration, state, on_fire): duration 후 StateTimeout(state, generation) 발생
- 이미 arm 상태면 이전 timer 취소 (최신 for_max만 유효)
- cancel(): 대기 중인 timer 취소

원칙:
1. Timer는 이벤트를 "전달"만 한다 (상태 판단은 Engine)
2. 모든 firing은 arm 세대(generation)를 포함 → Engine이 stale 여부 판단
3. Clock 주입 (determinism): ManualScheduler로 테스트에서 시간 제어

Exports:
- TimerScheduler: scheduler 인터페이스
- ThreadingScheduler: threading.Timer 기반 (production)
- ManualScheduler: 수동 시계 (test/replay)
- StateTimer: 인스턴스별 단일 timer
"""

import heapq
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from domain.events import StateTimeout
from domain.state import RequestState

logger = logging.getLogger(__name__)


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        pass


class TimerScheduler(ABC):
    """delay(초) 후 callback 1회 실행"""

    @abstractmethod
    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        pass


class _ThreadingHandle(TimerHandle):
    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadingScheduler(TimerScheduler):
    """threading.Timer 기반 scheduler (daemon thread)"""

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return _ThreadingHandle(timer)


@dataclass(order=True)
class _ManualTask:
    deadline: float
    order: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)


class _ManualHandle(TimerHandle):
    def __init__(self, task: _ManualTask):
        self._task = task

    def cancel(self) -> None:
        self._task.cancelled = True


class ManualScheduler(TimerScheduler):
    """
    수동 시계 scheduler (Clock 주입)

    Usage:
        scheduler = ManualScheduler()
        scheduler.schedule(3.0, fire)
        scheduler.advance(2.9)  # 아직 발생 안 함
        scheduler.advance(0.1)  # fire() 호출

    advance()는 호출한 thread에서 deadline 순서대로 callback을 실행한다.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._tasks: List[_ManualTask] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._now

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        with self._lock:
            task = _ManualTask(
                deadline=self._now + max(delay, 0.0),
                order=next(self._counter),
                callback=callback,
            )
            heapq.heappush(self._tasks, task)
        return _ManualHandle(task)

    def advance(self, seconds: float) -> int:
        """
        시계를 seconds만큼 진행하고 만료된 callback 실행

        Returns:
            실행된 callback 수
        """
        target = self._now + seconds
        fired = 0
        while True:
            with self._lock:
                if not self._tasks or self._tasks[0].deadline > target:
                    break
                task = heapq.heappop(self._tasks)
                self._now = max(self._now, task.deadline)
            if task.cancelled:
                continue
            task.callback()
            fired += 1
        self._now = target
        return fired

    @property
    def pending(self) -> int:
        """취소되지 않은 대기 task 수"""
        with self._lock:
            return sum(1 for t in self._tasks if not t.cancelled)


class StateTimer:
    """
    인스턴스별 단일 state timer

    - arm(): 이전 timer 취소 후 새 세대로 arm
    - is_current(): firing이 최신 arm에 해당하는지
    """

    def __init__(self, scheduler: TimerScheduler):
        self._scheduler = scheduler
        self._handle: Optional[TimerHandle] = None
        self._armed_state: Optional[RequestState] = None
        self._generation = 0
        self._lock = threading.Lock()

    def arm(
        self,
        duration: float,
        state: RequestState,
        on_fire: Callable[[StateTimeout], None],
    ) -> int:
        """
        state timeout arm

        Returns:
            generation: 이번 arm의 세대 번호
        """
        with self._lock:
            self._cancel_locked()
            self._generation += 1
            generation = self._generation
            self._armed_state = state

            def fire():
                on_fire(StateTimeout(state=state, generation=generation))

            self._handle = self._scheduler.schedule(duration, fire)

        logger.debug(f"[TIMER] armed {duration}s for {state.value} (gen={generation})")
        return generation

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._armed_state = None

    def _matches_locked(self, timeout: StateTimeout) -> bool:
        return (
            self._armed_state is not None
            and timeout.state == self._armed_state
            and timeout.generation == self._generation
        )

    def is_current(self, timeout: StateTimeout) -> bool:
        """firing이 최신 arm (취소되지 않음)에 해당하는지"""
        with self._lock:
            return self._matches_locked(timeout)

    def consume(self, timeout: StateTimeout) -> bool:
        """현재 firing이면 armed 상태를 해제하고 True"""
        with self._lock:
            if self._matches_locked(timeout):
                self._handle = None
                self._armed_state = None
                return True
            return False

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._armed_state is not None

    @property
    def armed_state(self) -> Optional[RequestState]:
        with self._lock:
            return self._armed_state

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation
