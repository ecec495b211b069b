"""
Transition Table — (state, event kind) → handler

원칙:
1. 한 번 구성 후 freeze (인스턴스 시작 전에 완성)
2. 명시적 규칙 우선, 없으면 state별 catch-all
3. 둘 다 없으면 lookup() → None (Engine이 UnhandledEvent 처리)
4. 규칙은 등록 순서대로 조회 가능 (완전성 테스트용)

Exports:
- Handler: (event, data) -> Outcome
- Rule: 등록된 규칙 1개
- TransitionTable: 규칙 테이블
"""

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from domain.events import EventKind, RequestEvent
from domain.outcome import Outcome
from domain.state import RequestData, RequestState

Handler = Callable[[RequestEvent, RequestData], Outcome]


@dataclass(frozen=True)
class Rule:
    """
    등록된 전이 규칙

    - kind=None: 해당 state의 catch-all (명시 규칙이 없는 모든 이벤트)
    """
    state: RequestState
    kind: Optional[EventKind]
    handler: Handler
    description: str = ""

    @property
    def is_catch_all(self) -> bool:
        return self.kind is None


class TransitionTable:
    """
    (state, kind) 규칙 테이블

    Usage:
        table = TransitionTable()
        table.when(RequestState.NEW, EventKind.SUBMIT_REQUEST, on_submit)
        table.when_any(RequestState.DONE, ignore)
        table.freeze()
    """

    def __init__(self):
        self._rules: Dict[Tuple[RequestState, EventKind], Rule] = {}
        self._catch_all: Dict[RequestState, Rule] = {}
        self._ordered: List[Rule] = []
        self._frozen = False

    def when(
        self,
        state: RequestState,
        kind: EventKind,
        handler: Handler,
        description: str = "",
    ) -> "TransitionTable":
        """명시 규칙 등록 (중복 등록 → ValueError)"""
        self._check_mutable()
        key = (state, kind)
        if key in self._rules:
            raise ValueError(f"Duplicate rule for ({state.value}, {kind.value})")
        rule = Rule(state=state, kind=kind, handler=handler, description=description)
        self._rules[key] = rule
        self._ordered.append(rule)
        return self

    def when_any(
        self,
        state: RequestState,
        handler: Handler,
        description: str = "",
    ) -> "TransitionTable":
        """catch-all 규칙 등록 (state당 1개)"""
        self._check_mutable()
        if state in self._catch_all:
            raise ValueError(f"Duplicate catch-all for {state.value}")
        rule = Rule(state=state, kind=None, handler=handler, description=description)
        self._catch_all[state] = rule
        self._ordered.append(rule)
        return self

    def freeze(self) -> "TransitionTable":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, state: RequestState, kind: EventKind) -> Optional[Rule]:
        """
        규칙 조회

        Returns:
            명시 규칙 → catch-all → None 순서
        """
        rule = self._rules.get((state, kind))
        if rule is not None:
            return rule
        return self._catch_all.get(state)

    def has_rule(self, state: RequestState, kind: EventKind) -> bool:
        """명시 규칙 존재 여부 (catch-all 제외)"""
        return (state, kind) in self._rules

    def has_catch_all(self, state: RequestState) -> bool:
        return state in self._catch_all

    @property
    def rules(self) -> Tuple[Rule, ...]:
        """등록 순서대로 모든 규칙"""
        return tuple(self._ordered)

    def states(self) -> FrozenSet[RequestState]:
        """규칙이 하나라도 있는 state 집합"""
        return frozenset(rule.state for rule in self._ordered)

    def _check_mutable(self):
        if self._frozen:
            raise RuntimeError("TransitionTable is frozen")
