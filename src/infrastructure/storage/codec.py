"""
src/infrastructure/storage/codec.py

Journal/Snapshot JSON codec

원칙:
1. 모든 이벤트는 "kind" tag를 가진 dict로 직렬화
2. NaN은 그대로 유지 (json 모듈의 NaN literal)
3. 알 수 없는 kind / 누락 필드 → ValueError

Exports:
- event_to_dict / event_from_dict
- data_to_dict / data_from_dict
- entry_to_dict / entry_from_dict
- snapshot_to_dict / snapshot_from_dict
"""

from typing import Any, Dict, Optional

from domain.events import (
    CustomerAccept,
    CustomerReject,
    Crash,
    DealerAccept,
    DealerCounter,
    DealerReject,
    EventKind,
    RequestEvent,
    StateTimeout,
    SubmitRequest,
)
from domain.journal import JournalEntry, SnapshotRecord
from domain.state import BidOffer, RequestData, RequestState

SCHEMA_VERSION = "1.0"


def event_to_dict(event: RequestEvent) -> Dict[str, Any]:
    """이벤트 → dict"""
    payload: Dict[str, Any] = {"kind": event.kind.value}

    if isinstance(event, SubmitRequest):
        payload["isin"] = event.isin
        payload["side"] = event.side.value
    elif isinstance(event, DealerAccept):
        payload["price"] = event.price
        payload["wiretime_seconds"] = event.wiretime_seconds
    elif isinstance(event, DealerCounter):
        payload["price"] = event.price
    elif isinstance(event, StateTimeout):
        payload["state"] = event.state.identifier
        payload["generation"] = event.generation

    return payload


def event_from_dict(payload: Dict[str, Any]) -> RequestEvent:
    """
    dict → 이벤트

    Raises:
        ValueError: 알 수 없는 kind 또는 필드 누락
    """
    try:
        kind = EventKind(payload["kind"])
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown event payload: {payload!r}") from e

    try:
        if kind == EventKind.SUBMIT_REQUEST:
            return SubmitRequest(isin=payload["isin"], side=BidOffer(payload["side"]))
        if kind == EventKind.DEALER_ACCEPT:
            return DealerAccept(
                price=float(payload["price"]),
                wiretime_seconds=float(payload["wiretime_seconds"]),
            )
        if kind == EventKind.DEALER_COUNTER:
            return DealerCounter(price=float(payload["price"]))
        if kind == EventKind.STATE_TIMEOUT:
            return StateTimeout(
                state=RequestState.from_identifier(payload["state"]),
                generation=int(payload.get("generation", 0)),
            )
    except KeyError as e:
        raise ValueError(f"Missing field {e} in {kind.value} payload") from e

    simple = {
        EventKind.DEALER_REJECT: DealerReject,
        EventKind.CUSTOMER_ACCEPT: CustomerAccept,
        EventKind.CUSTOMER_REJECT: CustomerReject,
        EventKind.CRASH: Crash,
    }
    return simple[kind]()


def data_to_dict(data: RequestData) -> Dict[str, Any]:
    return {"isin": data.isin, "side": data.side.value, "price": data.price}


def data_from_dict(payload: Dict[str, Any]) -> RequestData:
    try:
        return RequestData(
            isin=payload["isin"],
            side=BidOffer(payload["side"]),
            price=float(payload["price"]),
        )
    except (KeyError, ValueError) as e:
        raise ValueError(f"Invalid data payload: {payload!r}") from e


def entry_to_dict(entry: JournalEntry) -> Dict[str, Any]:
    """JournalEntry → JSONL 1줄용 dict"""
    return {
        "schema_version": SCHEMA_VERSION,
        "sequence_nr": entry.sequence_nr,
        "state": entry.state.identifier,
        "event": event_to_dict(entry.event) if entry.event is not None else None,
        "timeout_seconds": entry.timeout_seconds,
    }


def entry_from_dict(payload: Dict[str, Any]) -> JournalEntry:
    try:
        raw_event: Optional[Dict[str, Any]] = payload.get("event")
        timeout = payload.get("timeout_seconds")
        return JournalEntry(
            sequence_nr=int(payload["sequence_nr"]),
            state=RequestState.from_identifier(payload["state"]),
            event=event_from_dict(raw_event) if raw_event is not None else None,
            timeout_seconds=float(timeout) if timeout is not None else None,
        )
    except KeyError as e:
        raise ValueError(f"Missing field {e} in journal entry") from e


def snapshot_to_dict(snapshot: SnapshotRecord) -> Dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "state": snapshot.state.identifier,
        "data": data_to_dict(snapshot.data),
        "sequence_nr": snapshot.sequence_nr,
        "timeout_seconds": snapshot.timeout_seconds,
    }


def snapshot_from_dict(payload: Dict[str, Any]) -> SnapshotRecord:
    timeout = payload.get("timeout_seconds")
    try:
        return SnapshotRecord(
            state=RequestState.from_identifier(payload["state"]),
            data=data_from_dict(payload["data"]),
            sequence_nr=int(payload["sequence_nr"]),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )
    except KeyError as e:
        raise ValueError(f"Missing field {e} in snapshot") from e
