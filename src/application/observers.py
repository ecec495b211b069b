"""
Transition Observers — 전이 후 알림

Engine은 전이 결정/fold와 로그를 분리한다.
Observer는 전이가 "확정된 뒤"에만 호출되며, observer 예외는 전이를 되돌리지 않는다.

알림 순서 (subscribe 시):
1. on_current_state(persistence_id, state)
2. on_transition(Transition) ... (이후 전이마다)
"""

from dataclasses import dataclass
from typing import Optional

from domain.errors import RfqError
from domain.events import RequestEvent
from domain.state import RequestData, RequestState


@dataclass(frozen=True)
class Transition:
    """확정된 전이 1건"""
    persistence_id: str
    from_state: RequestState
    to_state: RequestState
    event: RequestEvent
    data: RequestData
    previous_data: Optional[RequestData] = None
    timeout_seconds: Optional[float] = None


class TransitionObserver:
    """
    Observer base (모든 hook은 기본 no-op)

    - on_current_state: subscribe 직후 현재 상태
    - on_transition: goto 확정 후
    - on_ignored: catch-all stay (system event)
    - on_unhandled: 규칙 없음 (이벤트 폐기)
    - on_fault: handler fault → teardown
    - on_recovered: start() 복구 완료
    """

    def on_current_state(self, persistence_id: str, state: RequestState) -> None:
        pass

    def on_transition(self, transition: Transition) -> None:
        pass

    def on_ignored(self, persistence_id: str, state: RequestState, event: RequestEvent) -> None:
        pass

    def on_unhandled(self, persistence_id: str, state: RequestState, event: RequestEvent) -> None:
        pass

    def on_fault(self, persistence_id: str, state: RequestState, error: RfqError) -> None:
        pass

    def on_recovered(
        self,
        persistence_id: str,
        state: RequestState,
        data: RequestData,
        sequence_nr: int,
    ) -> None:
        pass
