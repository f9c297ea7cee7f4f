import os
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from metering import models  # noqa: F401
import metering.entitlements.enforcement as enforcement_module
from metering.core.db import Base, create_db_engine
from metering.entitlements.enforcement import (
    check_quota,
    check_quota_warnings,
    clamp_percent,
    enforce_quota,
    usage_status_color,
)
from metering.models.enums import ResourceType
from metering.models.tenants import Tenant
from metering.notifications.dispatcher import QUOTA_THRESHOLD_WARNING, clear_listeners, register_listener
from metering.usage.resources import QUOTA_SUGGESTIONS
from tests.factories import add_usage, make_plan, make_subscription, make_tenant


NOW = datetime(2026, 3, 15, 12, 0)


@pytest.fixture
def db_session(tmp_path):
    db_url = f"sqlite:///{tmp_path}/enforcement_test.db"
    engine = create_db_engine(db_url)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def threshold_signals():
    received = []
    register_listener(QUOTA_THRESHOLD_WARNING, received.append)
    yield received
    clear_listeners()


def _tenant_with_limits(db_session, limits, *, name=None):
    tenant = make_tenant(db_session)
    plan = make_plan(db_session, name=name, limits=limits)
    make_subscription(db_session, tenant=tenant, plan=plan, now=NOW)
    return tenant


def _sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0


def test_transcription_over_limit_is_denied_with_suggestion(db_session):
    tenant = _tenant_with_limits(db_session, {"transcription_minutes": 100})
    add_usage(db_session, tenant=tenant, resource_type="transcription", quantity=90, occurred_at=NOW - timedelta(days=1))

    check = check_quota(db_session, tenant.id, "transcription", 20, now=NOW)
    decision = enforce_quota(db_session, tenant.id, "transcription", 20, now=NOW)

    assert check.exceeded is True
    assert check.percent_used == 110.0
    assert check.projected == Decimal("110")
    assert decision.allowed is False
    assert decision.suggestion == QUOTA_SUGGESTIONS[ResourceType.TRANSCRIPTION]
    assert decision.reason == "transcription quota exceeded. Used 110 of 100."


def test_request_that_lands_exactly_on_the_limit_is_allowed(db_session):
    tenant = _tenant_with_limits(db_session, {"processing_minutes": 100})
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=90, occurred_at=NOW - timedelta(hours=1))

    assert enforce_quota(db_session, tenant.id, "processing", 10, now=NOW).allowed is True
    assert enforce_quota(db_session, tenant.id, "processing", Decimal("10.5"), now=NOW).allowed is False


def test_decisions_are_monotonic_in_the_increment(db_session):
    tenant = _tenant_with_limits(db_session, {"api_calls": 50})
    add_usage(db_session, tenant=tenant, resource_type="apiCalls", quantity=20, occurred_at=NOW - timedelta(hours=1))

    results = [enforce_quota(db_session, tenant.id, "apiCalls", amount, now=NOW).allowed for amount in range(0, 60, 5)]

    first_denied = results.index(False)
    assert all(results[:first_denied])
    assert not any(results[first_denied:])


def test_usage_outside_current_month_does_not_count(db_session):
    tenant = _tenant_with_limits(db_session, {"processing_minutes": 100})
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=95, occurred_at=datetime(2026, 2, 28, 23))

    check = check_quota(db_session, tenant.id, "processing", 10, now=NOW)

    assert check.current == 0
    assert check.exceeded is False


def test_unlimited_resource_is_always_allowed(db_session):
    tenant = _tenant_with_limits(db_session, {"api_calls": None})
    add_usage(db_session, tenant=tenant, resource_type="apiCalls", quantity=10**6, occurred_at=NOW - timedelta(hours=1))

    decision = enforce_quota(db_session, tenant.id, "apiCalls", 10**6, now=NOW)

    assert decision.allowed is True
    assert decision.check.unlimited is True
    assert decision.check.percent_used == 0.0


def test_zero_limit_blocks_any_usage(db_session):
    tenant = _tenant_with_limits(db_session, {"ai_tokens": 0})

    assert enforce_quota(db_session, tenant.id, "aiTokens", 0, now=NOW).allowed is True
    assert enforce_quota(db_session, tenant.id, "aiTokens", 1, now=NOW).allowed is False


def test_enforcement_fails_open_when_usage_cannot_be_read(db_session, monkeypatch):
    tenant = make_tenant(db_session)
    labels = {"resource_type": "processing"}
    before = _sample("quota_fail_open_total", labels)

    def broken_aggregate(*args, **kwargs):
        raise RuntimeError("usage store unavailable")

    monkeypatch.setattr(enforcement_module, "aggregate", broken_aggregate)

    decision = enforce_quota(db_session, tenant.id, "processing", 10**9, now=NOW)

    assert decision.allowed is True
    assert decision.fail_open is True
    assert decision.check is None
    assert _sample("quota_fail_open_total", labels) == before + 1


def test_fail_open_keeps_rows_the_caller_staged(db_session, monkeypatch):
    tenant = make_tenant(db_session)

    def broken_aggregate(*args, **kwargs):
        raise RuntimeError("usage store unavailable")

    monkeypatch.setattr(enforcement_module, "aggregate", broken_aggregate)
    db_session.add(Tenant(name="Render farm", slug="render-farm"))

    decision = enforce_quota(db_session, tenant.id, "processing", 5, now=NOW)
    db_session.commit()

    assert decision.fail_open is True
    assert db_session.query(Tenant).filter(Tenant.slug == "render-farm").count() == 1


def test_invalid_input_is_rejected_rather_than_failing_open(db_session):
    tenant = make_tenant(db_session)

    with pytest.raises(ValueError):
        enforce_quota(db_session, tenant.id, "bandwidth", 1, now=NOW)
    with pytest.raises(ValueError):
        enforce_quota(db_session, tenant.id, "processing", -1, now=NOW)


def test_threshold_warning_between_80_and_100_percent(db_session, threshold_signals):
    tenant = _tenant_with_limits(db_session, {"processing_minutes": 100})
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=85, occurred_at=NOW - timedelta(hours=1))

    check_quota(db_session, tenant.id, "processing", 0, now=NOW)

    assert len(threshold_signals) == 1
    signal = threshold_signals[0]
    assert signal["tenant_id"] == tenant.id
    assert signal["resource_type"] == "processing"
    assert signal["percent_used"] == 85.0


def test_no_threshold_warning_once_exceeded_or_below_threshold(db_session, threshold_signals):
    tenant = _tenant_with_limits(db_session, {"processing_minutes": 100})
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=50, occurred_at=NOW - timedelta(hours=1))

    check_quota(db_session, tenant.id, "processing", 0, now=NOW)
    check_quota(db_session, tenant.id, "processing", 60, now=NOW)

    assert threshold_signals == []


def test_check_quota_warnings_returns_resources_near_limit(db_session, threshold_signals):
    tenant = _tenant_with_limits(db_session, {"processing_minutes": 100, "api_calls": 10})
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=90, occurred_at=NOW - timedelta(hours=1))
    add_usage(db_session, tenant=tenant, resource_type="apiCalls", quantity=2, occurred_at=NOW - timedelta(hours=1))

    near = check_quota_warnings(db_session, tenant.id, now=NOW)

    assert [check.resource_type for check in near] == [ResourceType.PROCESSING]
    assert [signal["resource_type"] for signal in threshold_signals] == ["processing"]


def test_denial_suggests_next_plan_on_the_ladder(db_session):
    free_tenant = make_tenant(db_session)
    starter_tenant = _tenant_with_limits(db_session, {"api_calls": 5}, name="Starter")
    custom_tenant = _tenant_with_limits(db_session, {"api_calls": 5}, name="Studio")

    free_decision = enforce_quota(db_session, free_tenant.id, "apiCalls", 5000, now=NOW)
    starter_decision = enforce_quota(db_session, starter_tenant.id, "apiCalls", 10, now=NOW)
    custom_decision = enforce_quota(db_session, custom_tenant.id, "apiCalls", 10, now=NOW)

    assert free_decision.upgrade_plan_key == "starter"
    assert starter_decision.upgrade_plan_key == "pro"
    assert custom_decision.upgrade_plan_key is None


def test_display_helpers():
    assert clamp_percent(150.0) == 100.0
    assert clamp_percent(float("inf")) == 100.0
    assert clamp_percent(float("nan")) == 0.0
    assert usage_status_color(95) == "red"
    assert usage_status_color(80) == "orange"
    assert usage_status_color(60) == "yellow"
    assert usage_status_color(10) == "green"
