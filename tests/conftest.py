"""
Pytest fixtures for the commission engine test suite.

Provides:
- Session-wide structured logging and a log capture fixture
- DeterministicClock
- In-memory SQLite session with all tables created
- Rule / event / credit builders and a seeded in-memory store
"""

import json
import logging
from datetime import UTC, date, datetime
from io import StringIO

import pytest

from commission_config.schema import CommissionConfig, EngineSettings
from commission_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from commission_kernel.domain.clock import DeterministicClock
from commission_kernel.domain.records import Credit, DistributionEvent
from commission_kernel.domain.rules import (
    CommissionTier,
    EntityType,
    FixedTerms,
    PercentageTerms,
    Rule,
    TieredTerms,
    VatMode,
)
from commission_kernel.domain.runs import CalculationRun
from commission_kernel.domain.values import DecimalValue
from commission_kernel.domain.vat import VatRate, VatTable
from commission_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from commission_kernel.services.store import InMemoryCommissionStore

TEST_ACTOR_ID = "tester"
FIXED_NOW = datetime(2024, 6, 30, 9, 0, 0, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture commission_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "credit_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("commission_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock / database
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    session = get_session()
    yield session
    session.rollback()
    session.close()
    drop_tables()
    reset_engine()


# =============================================================================
# Builders
# =============================================================================


def D(value: str) -> DecimalValue:
    return DecimalValue.of(value)


def make_rule(
    rule_id: str = "R1",
    *,
    version: int = 1,
    entity_type: EntityType = EntityType.DISTRIBUTOR,
    terms=None,
    **kwargs,
) -> Rule:
    """A percentage (1%) distributor rule unless told otherwise."""
    return Rule(
        id=rule_id,
        version=version,
        entity_type=entity_type,
        terms=terms if terms is not None else PercentageTerms(base_rate=D("0.01")),
        **kwargs,
    )


def make_tiered_terms(*tiers: tuple[str, str | None, str]) -> TieredTerms:
    """``(min, max, rate)`` triples, ordered as given."""
    return TieredTerms(
        tiers=tuple(
            CommissionTier(
                tier_order=i + 1,
                min_threshold=D(low),
                max_threshold=D(high) if high is not None else None,
                rate=D(rate),
            )
            for i, (low, high, rate) in enumerate(tiers)
        )
    )


def make_event(
    event_id: str = "E1",
    amount: str = "100000",
    on: date = date(2024, 3, 1),
    *,
    investor: str = "Investor A",
    fund: str = "Fund I",
    distributor: str | None = "Acme Capital",
    referrer: str | None = None,
    partner: str | None = None,
    **metadata,
) -> DistributionEvent:
    return DistributionEvent(
        id=event_id,
        investor_name=investor,
        fund_name=fund,
        amount=D(amount),
        date=on,
        distributor_name=distributor,
        referrer_name=referrer,
        partner_name=partner,
        metadata=metadata,
    )


def make_credit(
    credit_id: str = "C1",
    balance: str = "500",
    posted: date = date(2024, 1, 1),
    *,
    investor: str = "Investor A",
    fund: str = "Fund I",
) -> Credit:
    return Credit(
        id=credit_id,
        investor_name=investor,
        fund_name=fund,
        remaining_balance=D(balance),
        date_posted=posted,
    )


VAT_TABLE = VatTable(
    rates=(
        VatRate(jurisdiction="IL", rate=D("0.17"), effective_from=date(2020, 1, 1)),
        VatRate(jurisdiction="EU", rate=D("0.21"), effective_from=date(2020, 1, 1)),
        VatRate(jurisdiction="US", rate=D("0.0875"), effective_from=date(2020, 1, 1)),
    ),
    default_jurisdiction="IL",
)


@pytest.fixture
def vat_table() -> VatTable:
    return VAT_TABLE


@pytest.fixture
def test_config() -> CommissionConfig:
    """Sequential-friendly settings so tests are easy to reason about."""
    return CommissionConfig(
        config_id="test",
        version=1,
        settings=EngineSettings(batch_size=2, max_workers=4, default_actor_id=TEST_ACTOR_ID),
        vat_table=VAT_TABLE,
    )


@pytest.fixture
def store() -> InMemoryCommissionStore:
    return InMemoryCommissionStore()


@pytest.fixture
def seeded_store(clock) -> InMemoryCommissionStore:
    return build_seeded_store(clock.now())


def build_seeded_store(now: datetime = FIXED_NOW) -> InMemoryCommissionStore:
    """
    A DRAFT run ``RUN-1`` with three events and two rules:

    - distributor rule: tiered 1% to 100k, 1.5% above, VAT added (IL 17%)
    - referrer rule: fixed 250, no VAT

    Expected results: E1 distributor 1750 + 297.50 VAT, E1 referrer 250,
    E2 distributor 500 + 85 VAT, E3 distributor 200 + 34 VAT.
    """
    s = InMemoryCommissionStore()
    s.save_run(CalculationRun(id="RUN-1", name="Q1 2024", created_at=now))
    s.add_events(
        [
            make_event("E1", "150000", date(2024, 3, 1), referrer="Ref Co"),
            make_event("E2", "50000", date(2024, 3, 5), investor="Investor B"),
            make_event("E3", "20000", date(2024, 3, 9), distributor="Other Dist"),
        ],
        run_id="RUN-1",
    )
    s.save_rule(
        make_rule(
            "DIST-TIER",
            terms=make_tiered_terms(("0", "100000", "0.01"), ("100000", None, "0.015")),
            vat_mode=VatMode.ADDED,
            vat_jurisdiction="IL",
            priority=10,
        )
    )
    s.save_rule(
        make_rule(
            "REF-FIXED",
            entity_type=EntityType.REFERRER,
            terms=FixedTerms(fixed_amount=D("250")),
            priority=10,
        )
    )
    return s


__all__ = [
    "D",
    "FIXED_NOW",
    "TEST_ACTOR_ID",
    "VAT_TABLE",
    "build_seeded_store",
    "make_credit",
    "make_event",
    "make_rule",
    "make_tiered_terms",
]
