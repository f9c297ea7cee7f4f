import math
import os
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from metering import models  # noqa: F401
from metering.core.db import Base, create_db_engine
from metering.models.enums import ResourceType, UploadStatusEnum
from metering.usage.aggregator import (
    aggregate,
    get_usage,
    month_bounds,
    month_start,
    percent_of_limit,
    usage_statistics,
)
from tests.factories import add_upload, add_usage, make_tenant


NOW = datetime(2026, 3, 15, 12, 0)


@pytest.fixture
def db_session(tmp_path):
    db_url = f"sqlite:///{tmp_path}/aggregator_test.db"
    engine = create_db_engine(db_url)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    with TestingSessionLocal() as session:
        yield session


def test_month_helpers():
    assert month_start(NOW) == datetime(2026, 3, 1)
    assert month_bounds(datetime(2026, 12, 31, 23, 59)) == (datetime(2026, 12, 1), datetime(2027, 1, 1))


def test_percent_of_limit_edge_cases():
    assert percent_of_limit(Decimal("110"), 100) == 110.0
    assert percent_of_limit(Decimal("5"), None) == 0.0
    assert percent_of_limit(Decimal("0"), 0) == 0.0
    assert math.isinf(percent_of_limit(Decimal("1"), 0))


def test_counters_only_sum_events_inside_window(db_session):
    tenant = make_tenant(db_session)
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=10, occurred_at=NOW - timedelta(days=2))
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=5, occurred_at=NOW - timedelta(hours=1))
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=99, occurred_at=datetime(2026, 2, 27))
    add_usage(db_session, tenant=tenant, resource_type="apiCalls", quantity=3, occurred_at=NOW - timedelta(hours=2))

    totals = aggregate(db_session, tenant.id, month_start(NOW), NOW)

    assert totals[ResourceType.PROCESSING] == Decimal("15")
    assert totals[ResourceType.API_CALLS] == Decimal("3")


def test_resources_without_activity_report_zero(db_session):
    tenant = make_tenant(db_session)

    totals = aggregate(db_session, tenant.id, month_start(NOW), NOW)

    assert set(totals) == set(ResourceType)
    assert all(value == 0 for value in totals.values())


def test_storage_is_a_gauge_of_completed_uploads(db_session):
    tenant = make_tenant(db_session)
    other = make_tenant(db_session)
    add_upload(db_session, tenant=tenant, size_bytes=1000)
    add_upload(db_session, tenant=tenant, size_bytes=500)
    add_upload(db_session, tenant=tenant, size_bytes=7000, status=UploadStatusEnum.PENDING.value)
    add_upload(db_session, tenant=tenant, size_bytes=9000, status=UploadStatusEnum.DELETED.value)
    add_upload(db_session, tenant=other, size_bytes=4000)

    # A window long in the past still sees the bytes held now.
    totals = aggregate(db_session, tenant.id, datetime(2020, 1, 1), datetime(2020, 1, 2))

    assert totals[ResourceType.STORAGE] == Decimal("1500")


def test_compensating_events_reduce_totals(db_session):
    tenant = make_tenant(db_session)
    add_usage(db_session, tenant=tenant, resource_type="transcription", quantity=12, occurred_at=NOW - timedelta(hours=3))
    add_usage(db_session, tenant=tenant, resource_type="transcription", quantity=-2, occurred_at=NOW - timedelta(hours=1))

    totals = aggregate(db_session, tenant.id, month_start(NOW), NOW)

    assert totals[ResourceType.TRANSCRIPTION] == Decimal("10")


def test_get_usage_reports_percent_against_free_tier(db_session):
    tenant = make_tenant(db_session)
    add_usage(db_session, tenant=tenant, resource_type="processing", quantity=30, occurred_at=NOW - timedelta(days=1))

    summary = get_usage(db_session, tenant.id, now=NOW)

    assert summary.window_start == datetime(2026, 3, 1)
    assert summary.window_end == NOW
    assert summary.limits[ResourceType.PROCESSING] == 60
    assert summary.percent_used[ResourceType.PROCESSING] == 50.0
    payload = summary.to_payload()
    assert payload["resources"]["processing"]["limit"] == 60


def test_get_usage_rejects_inverted_window(db_session):
    tenant = make_tenant(db_session)

    with pytest.raises(ValueError):
        get_usage(db_session, tenant.id, start=NOW, end=NOW - timedelta(days=1), now=NOW)


def test_usage_statistics_covers_trailing_days(db_session):
    tenant = make_tenant(db_session)
    add_usage(db_session, tenant=tenant, resource_type="aiTokens", quantity=400, occurred_at=NOW - timedelta(days=3))
    add_usage(db_session, tenant=tenant, resource_type="aiTokens", quantity=600, occurred_at=NOW - timedelta(days=40))

    stats = {row["resource_type"]: row["total_amount"] for row in usage_statistics(db_session, tenant.id, 30, now=NOW)}

    assert stats["aiTokens"] == Decimal("400")
    assert stats["processing"] == 0
    with pytest.raises(ValueError):
        usage_statistics(db_session, tenant.id, 0, now=NOW)
