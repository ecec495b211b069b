"""
RFQ Transition Rules — Pure Handlers

RFQ 협상 프로토콜 전이 규칙 (순수 함수 handler)

원칙:
1. handler는 순수 함수 (side-effect 없음, 로그 없음)
2. 입력: (event, data)
3. 출력: Outcome (stay / goto / applying / for_max / and_snapshot)
4. 로그는 TransitionObserver가 전이 후에 남긴다

규칙:
- NEW + SubmitRequest → ORDER (applying)
- ORDER + DealerAccept → QUOTE_FIRM (applying, for_max wiretime)
- ORDER + DealerReject → CANCELLED
- QUOTE_FIRM + StateTimeout → QUOTE_SUBJECT
- QUOTE_FIRM + CustomerAccept → DONE
- QUOTE_FIRM + Crash → FaultInjected
- QUOTE_SUBJECT + CustomerAccept → QUOTE_SUBJECT_ACCEPTED
- QUOTE_SUBJECT_ACCEPTED + DealerCounter → QUOTE_SUBJECT (applying)
- QUOTE_SUBJECT_ACCEPTED + DealerReject → snapshot → CANCELLED
- QUOTE_FIRM / QUOTE_SUBJECT / QUOTE_SUBJECT_ACCEPTED / DONE + 기타 → stay
"""

from application.transition_table import TransitionTable
from domain.errors import FaultInjected
from domain.events import EventKind, RequestEvent
from domain.outcome import Outcome, goto, stay
from domain.state import RequestData, RequestState


def on_submit_request(event: RequestEvent, data: RequestData) -> Outcome:
    return goto(RequestState.ORDER).applying(event)


def on_dealer_accept(event: RequestEvent, data: RequestData) -> Outcome:
    # firm 호가는 wiretime 동안만 유효
    return (
        goto(RequestState.QUOTE_FIRM)
        .applying(event)
        .for_max(event.wiretime_seconds)
    )


def on_dealer_reject(event: RequestEvent, data: RequestData) -> Outcome:
    return goto(RequestState.CANCELLED)


def on_wiretime_expired(event: RequestEvent, data: RequestData) -> Outcome:
    return goto(RequestState.QUOTE_SUBJECT)


def on_firm_accept(event: RequestEvent, data: RequestData) -> Outcome:
    return goto(RequestState.DONE)


def on_crash(event: RequestEvent, data: RequestData) -> Outcome:
    raise FaultInjected("BOOM !")


def on_subject_accept(event: RequestEvent, data: RequestData) -> Outcome:
    return goto(RequestState.QUOTE_SUBJECT_ACCEPTED)


def on_dealer_counter(event: RequestEvent, data: RequestData) -> Outcome:
    return goto(RequestState.QUOTE_SUBJECT).applying(event)


def on_subject_dealer_reject(event: RequestEvent, data: RequestData) -> Outcome:
    # 거절 직전 (state, data)를 snapshot으로 남긴다 (이 경로에만 해당)
    return goto(RequestState.CANCELLED).and_snapshot()


def ignore_system_event(event: RequestEvent, data: RequestData) -> Outcome:
    return stay()


CATCH_ALL_STATES = (
    RequestState.QUOTE_FIRM,
    RequestState.QUOTE_SUBJECT,
    RequestState.QUOTE_SUBJECT_ACCEPTED,
    RequestState.DONE,
)


def build_rfq_transition_table() -> TransitionTable:
    """RFQ 전이 테이블 구성 (frozen)"""
    table = TransitionTable()

    table.when(RequestState.NEW, EventKind.SUBMIT_REQUEST, on_submit_request,
               "Client has submitted a request")

    table.when(RequestState.ORDER, EventKind.DEALER_ACCEPT, on_dealer_accept,
               "Dealer has accepted")
    table.when(RequestState.ORDER, EventKind.DEALER_REJECT, on_dealer_reject,
               "Dealer has rejected")

    table.when(RequestState.QUOTE_FIRM, EventKind.STATE_TIMEOUT, on_wiretime_expired,
               "Wiretime has expired")
    table.when(RequestState.QUOTE_FIRM, EventKind.CUSTOMER_ACCEPT, on_firm_accept,
               "Client accepted - deal done")
    table.when(RequestState.QUOTE_FIRM, EventKind.CRASH, on_crash,
               "Trigger exception")

    table.when(RequestState.QUOTE_SUBJECT, EventKind.CUSTOMER_ACCEPT, on_subject_accept,
               "Client accepted subject quote")

    table.when(RequestState.QUOTE_SUBJECT_ACCEPTED, EventKind.DEALER_COUNTER, on_dealer_counter,
               "Dealer countered")
    table.when(RequestState.QUOTE_SUBJECT_ACCEPTED, EventKind.DEALER_REJECT, on_subject_dealer_reject,
               "Dealer rejected")

    for state in CATCH_ALL_STATES:
        table.when_any(state, ignore_system_event, "System event")

    return table.freeze()


RFQ_TRANSITION_TABLE = build_rfq_transition_table()
