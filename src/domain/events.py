"""
Domain Events — RFQ Events

상태 전환 트리거 이벤트 (닫힌 tagged union)

분류:
- Domain event (영속 + fold 대상): SUBMIT_REQUEST, DEALER_ACCEPT, DEALER_COUNTER
- Control event (상태만 변경): DEALER_REJECT, CUSTOMER_ACCEPT, CUSTOMER_REJECT, STATE_TIMEOUT
- Fault injection: CRASH

모든 이벤트는 class-level `kind` tag를 가진다. Transition Table은
(state, kind)로 handler를 찾는다 (subclass 매칭 금지).
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from domain.state import BidOffer, RequestState


class EventKind(Enum):
    """
    RFQ Event 타입

    - SUBMIT_REQUEST: Client 요청 (New → Order)
    - DEALER_ACCEPT: Dealer 확정 호가 + wiretime (Order → Quote Firm)
    - DEALER_COUNTER: Dealer 역제안 (Quote Subject Accepted → Quote Subject)
    - DEALER_REJECT: Dealer 거절
    - CUSTOMER_ACCEPT: Client 수락
    - CUSTOMER_REJECT: Client 거절
    - CRASH: 장애 주입 (Quote Firm에서 fatal)
    - STATE_TIMEOUT: 상태 timeout (Timer가 합성)
    """
    SUBMIT_REQUEST = "SubmitRequest"
    DEALER_ACCEPT = "DealerAccept"
    DEALER_COUNTER = "DealerCounter"
    DEALER_REJECT = "DealerReject"
    CUSTOMER_ACCEPT = "CustomerAccept"
    CUSTOMER_REJECT = "CustomerReject"
    CRASH = "Crash"
    STATE_TIMEOUT = "StateTimeout"


@dataclass(frozen=True)
class SubmitRequest:
    kind: ClassVar[EventKind] = EventKind.SUBMIT_REQUEST
    isin: str
    side: BidOffer


@dataclass(frozen=True)
class DealerAccept:
    """Dealer 확정 호가 (wiretime_seconds 동안 firm)"""
    kind: ClassVar[EventKind] = EventKind.DEALER_ACCEPT
    price: float
    wiretime_seconds: float


@dataclass(frozen=True)
class DealerCounter:
    kind: ClassVar[EventKind] = EventKind.DEALER_COUNTER
    price: float


@dataclass(frozen=True)
class DealerReject:
    kind: ClassVar[EventKind] = EventKind.DEALER_REJECT


@dataclass(frozen=True)
class CustomerAccept:
    kind: ClassVar[EventKind] = EventKind.CUSTOMER_ACCEPT


@dataclass(frozen=True)
class CustomerReject:
    kind: ClassVar[EventKind] = EventKind.CUSTOMER_REJECT


@dataclass(frozen=True)
class Crash:
    """장애 주입 이벤트 (Quote Firm에서 handler가 FaultInjected 발생)"""
    kind: ClassVar[EventKind] = EventKind.CRASH


@dataclass(frozen=True)
class StateTimeout:
    """
    Timer가 합성하는 timeout 이벤트

    - state: timer를 arm한 시점의 상태
    - generation: arm 세대 번호 (최신 arm만 유효)

    Engine은 state/generation이 현재와 다르면 stale로 폐기한다.
    """
    kind: ClassVar[EventKind] = EventKind.STATE_TIMEOUT
    state: RequestState
    generation: int = 0


RequestEvent = Union[
    SubmitRequest,
    DealerAccept,
    DealerCounter,
    DealerReject,
    CustomerAccept,
    CustomerReject,
    Crash,
    StateTimeout,
]

DomainEvent = Union[SubmitRequest, DealerAccept, DealerCounter]

DOMAIN_EVENT_KINDS = frozenset({
    EventKind.SUBMIT_REQUEST,
    EventKind.DEALER_ACCEPT,
    EventKind.DEALER_COUNTER,
})


def is_domain_event(event: RequestEvent) -> bool:
    """fold 대상 이벤트인지 확인"""
    return event.kind in DOMAIN_EVENT_KINDS
