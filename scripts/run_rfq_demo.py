#!/usr/bin/env python3
"""
scripts/run_rfq_demo.py
RFQ Negotiation Demo

시나리오:
1. TEST 1: 확정 호가 수락 → Done
2. TEST 2: wiretime 만료 → Quote Subject → 수락 → Dealer 역제안
3. TEST 3: Quote Firm에서 장애 주입 → journal에서 재시작

실행:
    python scripts/run_rfq_demo.py --config config/rfq.yaml --wiretime 3
"""

import argparse
import logging
import time

from dotenv import load_dotenv

from application.bootstrap import build_registry
from application.registry import RequestRegistry
from domain.errors import InstanceUnavailable
from domain.events import (
    Crash,
    CustomerAccept,
    DealerAccept,
    DealerCounter,
    SubmitRequest,
)
from domain.ids import generate_persistence_id
from domain.state import BidOffer
from infrastructure.config.settings import load_settings
from infrastructure.logging.transition_logger import JsonlTransitionAudit, LoggingTransitionObserver

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def run_firm_accept(registry: RequestRegistry, wiretime: float):
    """TEST 1: Quote Firm에서 Client 수락"""
    logger.info("TEST 1...")
    pid = generate_persistence_id("request1")
    registry.ask(pid, SubmitRequest("XS12345", BidOffer.BID))
    registry.ask(pid, DealerAccept(101.20, wiretime))
    registry.ask(pid, CustomerAccept())
    logger.info(f"TEST 1 final state={registry.current_state(pid).value}")


def run_wiretime_expiry(registry: RequestRegistry, wiretime: float):
    """TEST 2: wiretime 만료 후 조건부 호가"""
    logger.info("TEST 2...wiretime expires")
    pid = generate_persistence_id("request2")
    registry.ask(pid, SubmitRequest("XS67890", BidOffer.BID))
    registry.ask(pid, DealerAccept(101.20, wiretime))
    time.sleep(wiretime + 1.0)
    registry.ask(pid, CustomerAccept())
    registry.ask(pid, DealerCounter(99.20))
    registry.ask(pid, CustomerAccept())
    data = registry.current_data(pid)
    logger.info(f"TEST 2 final state={registry.current_state(pid).value}, price={data.price:f}")


def run_crash_recovery(registry: RequestRegistry, wiretime: float):
    """TEST 3: 장애 주입 → teardown → journal 재시작"""
    logger.info("TEST 3...exception occurs")
    pid = generate_persistence_id("request3")
    registry.ask(pid, SubmitRequest("XS67890", BidOffer.BID))
    registry.ask(pid, DealerAccept(101.20, wiretime))
    result = registry.ask(pid, Crash())
    logger.info(f"TEST 3 crash result={result.status.value}: {result.error}")

    try:
        registry.ask(pid, CustomerAccept())
    except InstanceUnavailable as e:
        logger.info(f"TEST 3 torn down instance rejected event: {e}")

    registry.restart(pid)
    data = registry.current_data(pid)
    logger.info(f"TEST 3 recovered state={registry.current_state(pid).value}, price={data.price:f}")
    registry.ask(pid, CustomerAccept())
    logger.info(f"TEST 3 final state={registry.current_state(pid).value}")


def main():
    parser = argparse.ArgumentParser(description="RFQ negotiation FSM demo")
    parser.add_argument("--config", default="config/rfq.yaml", help="settings YAML path")
    parser.add_argument("--wiretime", type=float, default=3.0, help="dealer wiretime (seconds)")
    parser.add_argument("--audit", default=None, help="transition audit JSONL path (optional)")
    args = parser.parse_args()

    settings = load_settings(args.config, use_dotenv=False)

    logging.basicConfig(
        level=settings.log_level_value,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    observers = [LoggingTransitionObserver()]
    if args.audit:
        observers.append(JsonlTransitionAudit(args.audit))

    registry = build_registry(settings, observers=observers)
    try:
        run_firm_accept(registry, args.wiretime)
        run_wiretime_expiry(registry, args.wiretime)
        run_crash_recovery(registry, args.wiretime)
    finally:
        registry.stop_all()
        registry.event_log.close()


if __name__ == "__main__":
    main()
