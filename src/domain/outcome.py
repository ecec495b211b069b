"""
Domain Outcome — Handler Decision

Handler는 (event, data) → Outcome을 반환한다.
Outcome은 Engine이 실행하는 명령이며, handler 자체는 side-effect가 없다.

변형:
- stay(): 상태/timeout 변경 없음
- goto(s): 전이 (재-arm 없으면 timer 해제)
- goto(s).applying(e): 전이 + domain event 영속/fold
- goto(s).for_max(sec): 전이 + state timeout arm
- goto(s).and_snapshot(): 전이 전에 현재 (state, data) snapshot
"""

from dataclasses import dataclass, replace
from typing import Optional

from domain.events import RequestEvent, is_domain_event
from domain.state import RequestState


@dataclass(frozen=True)
class Outcome:
    """
    Handler 결과

    - next_state: None이면 stay
    - domain_event: 영속 + fold 대상 (Optional)
    - timeout_seconds: next_state에 대한 state timeout (Optional)
    - snapshot_first: 전이 전에 snapshot 요청
    """
    next_state: Optional[RequestState] = None
    domain_event: Optional[RequestEvent] = None
    timeout_seconds: Optional[float] = None
    snapshot_first: bool = False

    @property
    def is_stay(self) -> bool:
        return self.next_state is None

    def applying(self, event: RequestEvent) -> "Outcome":
        if not is_domain_event(event):
            raise ValueError(f"Only domain events can be applied: {event!r}")
        return replace(self, domain_event=event)

    def for_max(self, seconds: float) -> "Outcome":
        if self.is_stay:
            raise ValueError("for_max requires a target state")
        if seconds < 0:
            raise ValueError(f"timeout must be >= 0: {seconds}")
        return replace(self, timeout_seconds=float(seconds))

    def and_snapshot(self) -> "Outcome":
        return replace(self, snapshot_first=True)


def stay() -> Outcome:
    return Outcome()


def goto(state: RequestState) -> Outcome:
    return Outcome(next_state=state)
