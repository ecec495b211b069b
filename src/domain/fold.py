"""
Domain Fold — Pure Function

apply_event(event, data) -> data'

원칙:
1. 순수 함수 (side-effect 없음, I/O 금지)
2. Domain event만 처리 (SubmitRequest / DealerAccept / DealerCounter)
3. 그 외 이벤트 → UnhandledEvent (Transition/Domain 불일치 = 프로그래머 오류)

Recovery와 live 처리 모두 이 함수 하나로 data를 만든다.
"""

import math
from typing import Iterable

from domain.errors import UnhandledEvent
from domain.events import (
    DealerAccept,
    DealerCounter,
    RequestEvent,
    SubmitRequest,
)
from domain.state import INITIAL_DATA, RequestData


def apply_event(event: RequestEvent, data: RequestData) -> RequestData:
    """
    Domain event를 data에 적용한다.

    Args:
        event: Domain event
        data: 이전 data

    Returns:
        새 RequestData (입력 data는 변경되지 않음)

    Raises:
        UnhandledEvent: domain event가 아닌 경우
    """
    if isinstance(event, SubmitRequest):
        return RequestData(isin=event.isin, side=event.side, price=math.nan)

    if isinstance(event, (DealerAccept, DealerCounter)):
        return RequestData(isin=data.isin, side=data.side, price=event.price)

    raise UnhandledEvent(state=None, event=event, message=f"Unhandled event {event!r} in fold")


def replay(events: Iterable[RequestEvent], initial: RequestData = INITIAL_DATA) -> RequestData:
    """이벤트 시퀀스를 순서대로 fold"""
    data = initial
    for event in events:
        data = apply_event(event, data)
    return data
