import os
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# Ensure required settings exist before app import.
os.environ.setdefault("SKIP_MIGRATIONS", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from metering.main import app  # noqa: E402
import metering.usage.recorder as recorder_module  # noqa: E402
from metering.core.db import Base, create_db_engine, get_db  # noqa: E402
from metering.core.time import utcnow  # noqa: E402
from metering.models.tenants import Tenant  # noqa: E402
from metering.models.usage_events import UsageEvent  # noqa: E402
from metering.notifications.dispatcher import clear_listeners  # noqa: E402
from tests.factories import add_usage, make_plan, make_tenant  # noqa: E402


@pytest.fixture
def session_factory(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path}/api_test_{uuid4().hex}.db"
    test_engine = create_db_engine(db_url)
    TestSessionLocal = sessionmaker(bind=test_engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=test_engine)
    monkeypatch.setattr(recorder_module, "SessionLocal", TestSessionLocal)

    def fake_db():
        with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = fake_db
    yield TestSessionLocal
    app.dependency_overrides.clear()
    clear_listeners()


@pytest.fixture
def seeded(session_factory):
    with session_factory() as session:
        tenant = make_tenant(session, name="Acme Audio", slug="acme")
        other = make_tenant(session, name="Other Audio", slug="other")
        plan_a = make_plan(session, name="A", price="1000.00", limits={"transcription_minutes": 100})
        plan_b = make_plan(session, name="B", price="2500.00")
        return {
            "tenant_id": tenant.id,
            "other_id": other.id,
            "plan_a": plan_a.id,
            "plan_b": plan_b.id,
        }


@pytest.fixture
def client():
    return TestClient(app)


def _headers(tenant):
    return {"X-Tenant-ID": str(tenant)}


def test_ping_and_request_id(client):
    response = client.get("/ping", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.json() == {"message": "pong"}
    assert response.headers["X-Request-ID"] == "req-123"
    assert client.get("/api/v1/health").status_code == 200


def test_usage_requires_known_tenant(client, seeded):
    assert client.get("/api/v1/usage").status_code == 404
    assert client.get("/api/v1/usage", headers=_headers("missing")).status_code == 404


def test_read_usage_by_slug(client, seeded, session_factory):
    with session_factory() as session:
        tenant = session.get(Tenant, seeded["tenant_id"])
        add_usage(session, tenant=tenant, resource_type="processing", quantity=30, occurred_at=utcnow())

    response = client.get("/api/v1/usage", headers=_headers("acme"))

    assert response.status_code == 200
    body = response.json()
    assert body["tenant_id"] == seeded["tenant_id"]
    resources = {row["resource_type"]: row for row in body["resources"]}
    assert set(resources) == {"storage", "processing", "apiCalls", "transcription", "aiTokens"}
    assert Decimal(resources["processing"]["used"]) == Decimal("30")
    assert resources["processing"]["limit"] == 60
    assert resources["processing"]["percent_used"] == 50.0
    assert resources["processing"]["status_color"] == "yellow"


def test_entitlement_defaults_to_free_tier(client, seeded):
    response = client.get("/api/v1/usage/entitlement", headers=_headers(seeded["tenant_id"]))

    assert response.status_code == 200
    assert response.json()["source"] == "default"
    assert response.json()["limits"]["transcription"] == 30


def test_enforce_denies_over_quota(client, seeded, session_factory):
    headers = _headers(seeded["tenant_id"])
    client.post("/api/v1/billing/subscriptions", json={"plan_id": seeded["plan_a"]}, headers=headers)
    with session_factory() as session:
        tenant = session.get(Tenant, seeded["tenant_id"])
        add_usage(session, tenant=tenant, resource_type="transcription", quantity=90, occurred_at=utcnow())

    response = client.post(
        "/api/v1/usage/enforce",
        json={"resource_type": "transcription", "amount": 20},
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["allowed"] is False
    assert body["exceeded"] is True
    assert body["percent_used"] == 100.0
    assert body["suggestion"].startswith("Wait until next month")


def test_enforce_rejects_unknown_resource(client, seeded):
    response = client.post(
        "/api/v1/usage/enforce",
        json={"resource_type": "bandwidth", "amount": 1},
        headers=_headers(seeded["tenant_id"]),
    )

    assert response.status_code == 400


def test_record_usage_is_accepted(client, seeded, session_factory):
    response = client.post(
        "/api/v1/usage/record",
        json={"resource_type": "apiCalls", "quantity": 1, "endpoint": "/v1/render"},
        headers=_headers(seeded["tenant_id"]),
    )

    assert response.status_code == 202
    assert response.json()["recorded"] is True
    with session_factory() as session:
        event = session.query(UsageEvent).one()
        assert event.endpoint == "/v1/render"


def test_record_usage_failure_still_returns_accepted(client, seeded):
    response = client.post(
        "/api/v1/usage/record",
        json={"resource_type": "bandwidth", "quantity": 1},
        headers=_headers(seeded["tenant_id"]),
    )

    assert response.status_code == 202
    assert response.json() == {"recorded": False, "event_id": None}


def test_subscription_conflict_returns_error_code(client, seeded):
    headers = _headers(seeded["tenant_id"])

    created = client.post("/api/v1/billing/subscriptions", json={"plan_id": seeded["plan_a"]}, headers=headers)
    conflict = client.post("/api/v1/billing/subscriptions", json={"plan_id": seeded["plan_b"]}, headers=headers)

    assert created.status_code == 201
    assert created.json()["status"] == "active"
    assert conflict.status_code == 409
    assert conflict.headers["X-Error-Code"] == "invalid_state"
    assert conflict.json()["code"] == "invalid_state"


def test_current_subscription_details(client, seeded):
    headers = _headers(seeded["tenant_id"])
    assert client.get("/api/v1/billing/subscriptions/current", headers=headers).status_code == 404

    client.post("/api/v1/billing/subscriptions", json={"plan_id": seeded["plan_a"]}, headers=headers)
    response = client.get("/api/v1/billing/subscriptions/current", headers=headers)

    assert response.status_code == 200
    assert response.json()["badge"] == {"text": "Active", "color": "green"}


def test_cancel_twice_conflicts(client, seeded):
    headers = _headers(seeded["tenant_id"])
    subscription = client.post(
        "/api/v1/billing/subscriptions", json={"plan_id": seeded["plan_a"]}, headers=headers
    ).json()
    url = f"/api/v1/billing/subscriptions/{subscription['id']}/cancel"

    first = client.post(url, json={"reason": "user_request"}, headers=headers)
    second = client.post(url, json={"reason": "user_request"}, headers=headers)

    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"
    assert second.status_code == 409


def test_cannot_cancel_another_tenants_subscription(client, seeded):
    subscription = client.post(
        "/api/v1/billing/subscriptions",
        json={"plan_id": seeded["plan_a"]},
        headers=_headers(seeded["tenant_id"]),
    ).json()

    response = client.post(
        f"/api/v1/billing/subscriptions/{subscription['id']}/cancel",
        headers=_headers(seeded["other_id"]),
    )

    assert response.status_code == 404


def test_payment_results(client, seeded):
    headers = _headers(seeded["tenant_id"])
    subscription = client.post(
        "/api/v1/billing/subscriptions", json={"plan_id": seeded["plan_a"]}, headers=headers
    ).json()
    payload = {
        "subscription_id": subscription["id"],
        "success": False,
        "transaction_id": "txn-api-1",
        "failure_code": "card_declined",
    }

    first = client.post("/api/v1/billing/payments/result", json=payload)
    replay = client.post("/api/v1/billing/payments/result", json=payload)

    assert first.status_code == 200
    assert first.json()["duplicate"] is False
    assert first.json()["payment_status"] == "failed"
    assert first.json()["subscription"]["status"] == "past_due"
    assert replay.json()["duplicate"] is True
    assert replay.json()["subscription"]["consecutive_payment_failures"] == 1


def test_change_plan_endpoint(client, seeded):
    headers = _headers(seeded["tenant_id"])
    subscription = client.post(
        "/api/v1/billing/subscriptions", json={"plan_id": seeded["plan_a"]}, headers=headers
    ).json()

    response = client.post(
        f"/api/v1/billing/subscriptions/{subscription['id']}/change-plan",
        json={"plan_id": seeded["plan_b"]},
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["changed"] is True
    assert body["subscription"]["plan_id"] == seeded["plan_b"]
    assert body["quote"]["direction"] == "charge"


def test_proration_quote(client, seeded):
    response = client.get(
        "/api/v1/billing/proration",
        params={"from_plan_id": seeded["plan_a"], "to_plan_id": seeded["plan_b"], "remaining_days": 15},
    )

    assert response.status_code == 200
    assert Decimal(response.json()["prorated_amount"]) == Decimal("750")

    invalid = client.get(
        "/api/v1/billing/proration",
        params={"from_plan_id": seeded["plan_a"], "to_plan_id": seeded["plan_b"], "remaining_days": 31},
    )
    assert invalid.status_code == 400
    assert invalid.headers["X-Error-Code"] == "invalid_proration_input"


def test_reporting_endpoints(client, seeded):
    headers = _headers(seeded["tenant_id"])

    report = client.get("/api/v1/usage/report", params={"period": "daily"}, headers=headers)
    bad_period = client.get("/api/v1/usage/report", params={"period": "hourly"}, headers=headers)
    history = client.get("/api/v1/usage/history", headers=headers)
    trends = client.get("/api/v1/usage/trends", headers=headers)
    stats = client.get("/api/v1/usage/statistics", params={"days": 7}, headers=headers)

    assert report.status_code == 200
    assert report.json()["period"] == "daily"
    assert bad_period.status_code == 400
    assert history.json() == []
    assert trends.json()["trend"] == "insufficient_data"
    assert len(stats.json()) == 5


def test_export_csv(client, seeded):
    response = client.get(
        "/api/v1/usage/export",
        params={"start": "2026-03-01T00:00:00", "end": "2026-03-31T23:59:59"},
        headers=_headers(seeded["tenant_id"]),
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines()[0].startswith("period_start,period_end,storage_bytes")


def test_metrics_endpoint(client, seeded):
    client.post(
        "/api/v1/usage/enforce",
        json={"resource_type": "processing", "amount": 1},
        headers=_headers(seeded["tenant_id"]),
    )

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "quota_checks_total" in response.text

def test_list_plans(client, seeded):
    response = client.get("/api/v1/billing/plans")

    assert response.status_code == 200
    plans = {plan["name"]: plan for plan in response.json()}
    assert set(plans) == {"A", "B"}
    assert plans["A"]["limits_json"] == {"transcription_minutes": 100}
    assert Decimal(plans["B"]["prices"][0]["amount"]) == Decimal("2500")
