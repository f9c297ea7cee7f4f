import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from metering import models  # noqa: F401
from metering.billing.lifecycle import cancel_subscription, handle_payment_result
from metering.core.db import Base, create_db_engine
from metering.crud.subscriptions import get_subscription
from metering.entitlements.catalog import (
    SOURCE_DEFAULT,
    SOURCE_PLAN,
    default_entitlement,
    limits_from_plan,
    resolve_entitlement,
)
from metering.models.enums import ResourceType
from metering.usage.resources import FREE_TIER_LIMITS, GIB
from tests.factories import make_plan, make_subscription, make_tenant


NOW = datetime(2026, 3, 15, 12, 0)


@pytest.fixture
def db_session(tmp_path):
    db_url = f"sqlite:///{tmp_path}/entitlements_test.db"
    engine = create_db_engine(db_url)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    with TestingSessionLocal() as session:
        yield session


def test_workspace_without_subscription_gets_free_tier(db_session):
    tenant = make_tenant(db_session, name="Acme")

    entitlement = resolve_entitlement(db_session, tenant.id, now=NOW)

    assert entitlement.source == SOURCE_DEFAULT
    assert entitlement.plan_id is None
    assert entitlement.limit_for(ResourceType.STORAGE) == GIB
    assert entitlement.limit_for(ResourceType.PROCESSING) == 60
    assert entitlement.limit_for(ResourceType.API_CALLS) == 1000
    assert entitlement.limit_for(ResourceType.TRANSCRIPTION) == 30
    assert entitlement.limit_for(ResourceType.AI_TOKENS) == 50000


def test_active_subscription_uses_plan_limits(db_session):
    tenant = make_tenant(db_session)
    plan = make_plan(
        db_session,
        name="Studio",
        limits={"storage_bytes": 5 * GIB, "processing_minutes": 600, "api_calls": None},
    )
    subscription = make_subscription(db_session, tenant=tenant, plan=plan, now=NOW)

    entitlement = resolve_entitlement(db_session, tenant.id, now=NOW)

    assert entitlement.source == SOURCE_PLAN
    assert entitlement.plan_name == "Studio"
    assert entitlement.subscription_id == subscription.id
    assert entitlement.limit_for(ResourceType.STORAGE) == 5 * GIB
    assert entitlement.limit_for(ResourceType.PROCESSING) == 600
    # Missing keys fall back to the free tier.
    assert entitlement.limit_for(ResourceType.TRANSCRIPTION) == 30


def test_null_limit_means_unlimited(db_session):
    tenant = make_tenant(db_session)
    plan = make_plan(db_session, limits={"api_calls": None})
    make_subscription(db_session, tenant=tenant, plan=plan, now=NOW)

    entitlement = resolve_entitlement(db_session, tenant.id, now=NOW)

    assert entitlement.limit_for(ResourceType.API_CALLS) is None
    assert entitlement.is_unlimited(ResourceType.API_CALLS)
    assert not entitlement.is_unlimited(ResourceType.STORAGE)
    assert entitlement.to_payload()["limits"]["apiCalls"] is None


def test_invalid_plan_limits_fall_back_to_free_tier(db_session):
    plan = make_plan(db_session, limits={"processing_minutes": -5, "ai_tokens": "lots"})

    limits = limits_from_plan(plan)

    assert limits[ResourceType.PROCESSING] == FREE_TIER_LIMITS[ResourceType.PROCESSING]
    assert limits[ResourceType.AI_TOKENS] == FREE_TIER_LIMITS[ResourceType.AI_TOKENS]


def test_past_due_subscription_falls_back_to_free_tier(db_session):
    tenant = make_tenant(db_session)
    plan = make_plan(db_session, limits={"processing_minutes": 600})
    subscription = make_subscription(db_session, tenant=tenant, plan=plan, now=NOW)
    handle_payment_result(db_session, subscription.id, False, "txn-declined-1", "card_declined", now=NOW)

    entitlement = resolve_entitlement(db_session, tenant.id, now=NOW)

    assert get_subscription(db_session, subscription.id).status == "past_due"
    assert entitlement.source == SOURCE_DEFAULT
    assert entitlement.limit_for(ResourceType.PROCESSING) == 60


def test_cancelled_subscription_falls_back_to_free_tier(db_session):
    tenant = make_tenant(db_session)
    plan = make_plan(db_session, limits={"processing_minutes": 600})
    subscription = make_subscription(db_session, tenant=tenant, plan=plan, now=NOW)
    cancel_subscription(db_session, subscription.id, "user_request", now=NOW)

    entitlement = resolve_entitlement(db_session, tenant.id, now=NOW)

    assert entitlement == default_entitlement(tenant.id)


def test_expired_trial_is_activated_on_read(db_session):
    tenant = make_tenant(db_session)
    plan = make_plan(db_session, limits={"processing_minutes": 600}, trial_days=14)
    subscription = make_subscription(db_session, tenant=tenant, plan=plan, now=NOW)
    assert subscription.status == "trialing"

    later = NOW + timedelta(days=15)
    entitlement = resolve_entitlement(db_session, tenant.id, now=later)

    refreshed = get_subscription(db_session, subscription.id)
    assert entitlement.source == SOURCE_PLAN
    assert refreshed.status == "active"
    assert refreshed.current_period_start == NOW + timedelta(days=14)
    assert refreshed.current_period_end == NOW + timedelta(days=44)
