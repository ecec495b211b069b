"""
tests/unit/test_transition_table.py
Unit tests for TransitionTable + RFQ 규칙

Test Coverage:
1. RFQ 규칙 표 (from, event) → Outcome 전부 고정
2. 완전성: 규칙/catch-all 없는 (state, kind) → lookup None
3. 테이블 구성 제약 (중복 규칙, freeze 후 등록 금지)
"""

import pytest

from application.transition import (
    CATCH_ALL_STATES,
    RFQ_TRANSITION_TABLE,
    build_rfq_transition_table,
)
from application.transition_table import TransitionTable
from domain.errors import FaultInjected
from domain.events import (
    Crash,
    CustomerAccept,
    CustomerReject,
    DealerAccept,
    DealerCounter,
    DealerReject,
    EventKind,
    StateTimeout,
    SubmitRequest,
)
from domain.outcome import goto, stay
from domain.state import BidOffer, RequestData, RequestState

DATA = RequestData("XS12345", BidOffer.BID, 101.20)


def _outcome(state, event):
    rule = RFQ_TRANSITION_TABLE.lookup(state, event.kind)
    assert rule is not None, f"no rule for ({state.value}, {event.kind.value})"
    return rule.handler(event, DATA)


class TestRfqRules:
    """RFQ 프로토콜 규칙 표"""

    def test_new_submit_request_goes_to_order_applying_event(self):
        event = SubmitRequest("XS12345", BidOffer.BID)
        outcome = _outcome(RequestState.NEW, event)

        assert outcome.next_state == RequestState.ORDER
        assert outcome.domain_event == event
        assert outcome.timeout_seconds is None

    def test_order_dealer_accept_goes_to_quote_firm_for_wiretime(self):
        event = DealerAccept(101.20, 3)
        outcome = _outcome(RequestState.ORDER, event)

        assert outcome.next_state == RequestState.QUOTE_FIRM
        assert outcome.domain_event == event
        assert outcome.timeout_seconds == 3.0

    def test_order_dealer_reject_goes_to_cancelled(self):
        assert _outcome(RequestState.ORDER, DealerReject()) == goto(RequestState.CANCELLED)

    def test_quote_firm_timeout_goes_to_quote_subject(self):
        outcome = _outcome(RequestState.QUOTE_FIRM, StateTimeout(RequestState.QUOTE_FIRM, 1))
        assert outcome == goto(RequestState.QUOTE_SUBJECT)

    def test_quote_firm_customer_accept_goes_to_done(self):
        assert _outcome(RequestState.QUOTE_FIRM, CustomerAccept()) == goto(RequestState.DONE)

    def test_quote_firm_crash_raises_fault(self):
        with pytest.raises(FaultInjected):
            _outcome(RequestState.QUOTE_FIRM, Crash())

    def test_quote_subject_customer_accept_goes_to_accepted(self):
        outcome = _outcome(RequestState.QUOTE_SUBJECT, CustomerAccept())
        assert outcome == goto(RequestState.QUOTE_SUBJECT_ACCEPTED)

    def test_subject_accepted_dealer_counter_returns_to_subject_applying(self):
        event = DealerCounter(99.20)
        outcome = _outcome(RequestState.QUOTE_SUBJECT_ACCEPTED, event)

        assert outcome.next_state == RequestState.QUOTE_SUBJECT
        assert outcome.domain_event == event

    def test_subject_accepted_dealer_reject_snapshots_then_cancels(self):
        outcome = _outcome(RequestState.QUOTE_SUBJECT_ACCEPTED, DealerReject())

        assert outcome.next_state == RequestState.CANCELLED
        assert outcome.snapshot_first is True
        assert outcome.domain_event is None

    @pytest.mark.parametrize("state", CATCH_ALL_STATES)
    def test_catch_all_states_swallow_stray_events(self, state):
        rule = RFQ_TRANSITION_TABLE.lookup(state, EventKind.CUSTOMER_REJECT)

        assert rule is not None
        assert rule.is_catch_all
        assert rule.handler(CustomerReject(), DATA) == stay()

    def test_explicit_rule_wins_over_catch_all(self):
        rule = RFQ_TRANSITION_TABLE.lookup(RequestState.QUOTE_FIRM, EventKind.CUSTOMER_ACCEPT)
        assert rule.is_catch_all is False


class TestTableCompleteness:
    """규칙도 catch-all도 없는 (state, kind) → None (Engine이 UnhandledEvent 처리)"""

    def test_every_uncovered_pair_has_no_handler(self):
        uncovered = []
        for state in RequestState:
            for kind in EventKind:
                covered = (
                    RFQ_TRANSITION_TABLE.has_rule(state, kind)
                    or RFQ_TRANSITION_TABLE.has_catch_all(state)
                )
                if not covered:
                    assert RFQ_TRANSITION_TABLE.lookup(state, kind) is None
                    uncovered.append((state, kind))

        # NEW, ORDER, CANCELLED 에는 catch-all이 없다
        uncovered_states = {state for state, _ in uncovered}
        assert uncovered_states == {RequestState.NEW, RequestState.ORDER, RequestState.CANCELLED}

    def test_cancelled_is_terminal_without_any_rule(self):
        for kind in EventKind:
            assert RFQ_TRANSITION_TABLE.lookup(RequestState.CANCELLED, kind) is None

    def test_explicit_rules_match_protocol(self):
        explicit = {
            (rule.state, rule.kind) for rule in RFQ_TRANSITION_TABLE.rules if not rule.is_catch_all
        }
        assert explicit == {
            (RequestState.NEW, EventKind.SUBMIT_REQUEST),
            (RequestState.ORDER, EventKind.DEALER_ACCEPT),
            (RequestState.ORDER, EventKind.DEALER_REJECT),
            (RequestState.QUOTE_FIRM, EventKind.STATE_TIMEOUT),
            (RequestState.QUOTE_FIRM, EventKind.CUSTOMER_ACCEPT),
            (RequestState.QUOTE_FIRM, EventKind.CRASH),
            (RequestState.QUOTE_SUBJECT, EventKind.CUSTOMER_ACCEPT),
            (RequestState.QUOTE_SUBJECT_ACCEPTED, EventKind.DEALER_COUNTER),
            (RequestState.QUOTE_SUBJECT_ACCEPTED, EventKind.DEALER_REJECT),
        }

    def test_build_returns_frozen_table(self):
        assert build_rfq_transition_table().frozen is True


class TestTableConstraints:
    def test_duplicate_rule_is_rejected(self):
        table = TransitionTable()
        table.when(RequestState.NEW, EventKind.SUBMIT_REQUEST, lambda e, d: stay())

        with pytest.raises(ValueError):
            table.when(RequestState.NEW, EventKind.SUBMIT_REQUEST, lambda e, d: stay())

    def test_duplicate_catch_all_is_rejected(self):
        table = TransitionTable().when_any(RequestState.DONE, lambda e, d: stay())

        with pytest.raises(ValueError):
            table.when_any(RequestState.DONE, lambda e, d: stay())

    def test_frozen_table_rejects_registration(self):
        table = TransitionTable().freeze()

        with pytest.raises(RuntimeError):
            table.when(RequestState.NEW, EventKind.CRASH, lambda e, d: stay())

    def test_rules_keep_registration_order(self):
        table = TransitionTable()
        table.when(RequestState.ORDER, EventKind.DEALER_REJECT, lambda e, d: stay())
        table.when_any(RequestState.DONE, lambda e, d: stay())
        table.when(RequestState.NEW, EventKind.SUBMIT_REQUEST, lambda e, d: stay())

        assert [r.state for r in table.rules] == [
            RequestState.ORDER, RequestState.DONE, RequestState.NEW,
        ]
        assert table.states() == {RequestState.ORDER, RequestState.DONE, RequestState.NEW}


class TestOutcome:
    def test_applying_rejects_control_event(self):
        with pytest.raises(ValueError):
            goto(RequestState.DONE).applying(CustomerAccept())

    def test_for_max_requires_target_state(self):
        with pytest.raises(ValueError):
            stay().for_max(3)

    def test_for_max_rejects_negative_duration(self):
        with pytest.raises(ValueError):
            goto(RequestState.QUOTE_FIRM).for_max(-1)

    def test_outcome_builders_do_not_mutate(self):
        base = goto(RequestState.QUOTE_FIRM)
        armed = base.for_max(3)

        assert base.timeout_seconds is None
        assert armed.timeout_seconds == 3.0
