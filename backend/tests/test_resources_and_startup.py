import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import metering.core.startup_checks as startup_module
import metering.usage.resources as resources_module
from metering.core.config import settings
from metering.models.enums import ResourceType
from metering.usage.resources import COUNTER_RESOURCES, GAUGE_RESOURCES, parse_resource_type, verify_resource_tables


def test_resource_tables_cover_every_resource_type():
    verify_resource_tables()
    assert GAUGE_RESOURCES | COUNTER_RESOURCES == set(ResourceType)
    assert not GAUGE_RESOURCES & COUNTER_RESOURCES


def test_drifted_table_is_reported(monkeypatch):
    prices = dict(resources_module.UNIT_PRICES)
    prices.pop(ResourceType.AI_TOKENS)
    monkeypatch.setattr(resources_module, "UNIT_PRICES", prices)

    with pytest.raises(RuntimeError) as exc:
        verify_resource_tables()
    assert "UNIT_PRICES" in str(exc.value)


def test_parse_resource_type():
    assert parse_resource_type("apiCalls") is ResourceType.API_CALLS
    assert parse_resource_type(ResourceType.STORAGE) is ResourceType.STORAGE
    with pytest.raises(ValueError):
        parse_resource_type("api_calls")


def test_startup_checks_pass_with_defaults():
    startup_module.run_startup_checks()


def test_startup_checks_reject_bad_currency(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_CURRENCY", "DOLLARS")

    with pytest.raises(RuntimeError) as exc:
        startup_module.run_startup_checks()
    assert "DEFAULT_CURRENCY" in str(exc.value)


def test_startup_checks_reject_echo_in_production(monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    monkeypatch.setattr(settings, "DB_ECHO", True)

    with pytest.raises(RuntimeError) as exc:
        startup_module.run_startup_checks()
    assert "DB_ECHO" in str(exc.value)
