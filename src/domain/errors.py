"""
Domain Errors — RFQ Error Taxonomy

분류:
- UnhandledEvent: (state, event) 규칙 없음 → 이벤트 폐기, 상태 유지 (non-fatal)
- PersistenceFailure: EventLog append/snapshot 실패 → 전이 중단, 재전송으로 재시도 가능
- FaultInjected: Crash 경로 → 인스턴스 teardown, journal replay로 복구
- InstanceUnavailable: teardown/미시작 인스턴스에 대한 호출
- FatalConfigError: 설정 오류 (프로세스 시작 거부)

UnhandledEvent / PersistenceFailure / FaultInjected는 HandleResult.error로 전달되고,
InstanceUnavailable / FatalConfigError는 raise된다.
"""

from typing import Optional


class RfqError(Exception):
    """RFQ 에러 base"""

    pass


class UnhandledEvent(RfqError):
    """(state, event kind)에 대한 규칙 없음"""

    def __init__(self, state, event, message: Optional[str] = None):
        self.state = state
        self.event = event
        super().__init__(
            message or f"Unhandled event {event!r} in state {getattr(state, 'value', state)}"
        )


class PersistenceFailure(RfqError):
    """EventLog 쓰기 실패 (in-memory 상태는 변경되지 않음)"""

    pass


class FaultInjected(RfqError):
    """의도적 fatal 조건 (인스턴스 teardown)"""

    pass


class InstanceUnavailable(RfqError):
    """teardown 되었거나 아직 시작되지 않은 인스턴스"""

    pass


class FatalConfigError(RfqError):
    """설정 오류 (fail-fast)"""

    pass
