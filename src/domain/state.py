"""
Domain State Models

RFQ 협상 프로세스의 상태/데이터 정의

원칙:
1. State는 닫힌 집합 (7개), payload 없음
2. RequestData는 불변 (fold 단계에서 통째로 교체)
3. price의 NaN은 "미설정" sentinel

Exports:
- RequestState: RFQ 상태
- BidOffer: 요청 방향
- RequestData: 누적 데이터 (isin, side, price)
- INITIAL_DATA: New 상태의 초기 데이터
- TERMINAL_STATES: 종료 상태 집합
"""

import math
from dataclasses import dataclass
from enum import Enum


class RequestState(Enum):
    """
    RFQ State Machine

    7가지 상태만 존재:
    - NEW: 요청 생성 직후 (isin 없음)
    - ORDER: Client 요청 접수, Dealer 응답 대기
    - QUOTE_FIRM: Dealer 확정 호가 (wiretime 동안 유효)
    - QUOTE_SUBJECT: wiretime 만료 후 조건부 호가
    - QUOTE_SUBJECT_ACCEPTED: Client가 조건부 호가 수락, Dealer 확인 대기
    - DONE: 거래 성립 (terminal)
    - CANCELLED: 거래 취소 (terminal)

    value는 journal에 기록되는 안정적인 identifier다.
    """
    NEW = "New"
    ORDER = "Order"
    QUOTE_FIRM = "Quote Firm"
    QUOTE_SUBJECT = "Quote Subject"
    QUOTE_SUBJECT_ACCEPTED = "Quote Subject Accepted"
    DONE = "Done"
    CANCELLED = "Cancelled"

    @property
    def identifier(self) -> str:
        return self.value

    @classmethod
    def from_identifier(cls, identifier: str) -> "RequestState":
        """journal identifier → RequestState (unknown → ValueError)"""
        return cls(identifier)


TERMINAL_STATES = frozenset({RequestState.DONE, RequestState.CANCELLED})


class BidOffer(Enum):
    """요청 방향"""
    BID = "Bid"
    OFFER = "Offer"
    NONE = "None"


@dataclass(frozen=True)
class RequestData:
    """
    RFQ 누적 데이터

    - isin: 종목 식별자 (SubmitRequest 전에는 "")
    - side: Bid / Offer / None
    - price: 현재 호가 (NaN = 미설정)

    Invariant: 영속된 domain event를 초기값에서 순서대로 fold한 결과와 같다.
    """
    isin: str = ""
    side: BidOffer = BidOffer.NONE
    price: float = math.nan

    @property
    def has_price(self) -> bool:
        return not math.isnan(self.price)

    def same_as(self, other: "RequestData") -> bool:
        """NaN-aware 비교 (dataclass __eq__는 NaN != NaN)"""
        if self.isin != other.isin or self.side != other.side:
            return False
        if math.isnan(self.price) and math.isnan(other.price):
            return True
        return self.price == other.price


INITIAL_DATA = RequestData()
