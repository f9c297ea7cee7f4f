"""
Per-resource tables shared by the catalog, the enforcer and reporting.

The resource enum is closed; each table below must carry exactly one entry
per member. ``verify_resource_tables`` runs at startup and in the test
suite so the tables cannot drift apart.
"""

from decimal import Decimal

from metering.models.enums import ResourceType


GIB = 1024 * 1024 * 1024

# Storage is a gauge (bytes currently held); everything else is a counter
# that accumulates inside a time window.
GAUGE_RESOURCES = frozenset({ResourceType.STORAGE})
COUNTER_RESOURCES = frozenset(set(ResourceType) - GAUGE_RESOURCES)

# Key used for each resource inside Plan.limits_json.
QUOTA_KEYS: dict[ResourceType, str] = {
    ResourceType.STORAGE: "storage_bytes",
    ResourceType.PROCESSING: "processing_minutes",
    ResourceType.API_CALLS: "api_calls",
    ResourceType.TRANSCRIPTION: "transcription_minutes",
    ResourceType.AI_TOKENS: "ai_tokens",
}

# Column used for each resource on UsageSnapshot.
SNAPSHOT_COLUMNS: dict[ResourceType, str] = {
    ResourceType.STORAGE: "storage_bytes",
    ResourceType.PROCESSING: "processing_minutes",
    ResourceType.API_CALLS: "api_calls",
    ResourceType.TRANSCRIPTION: "transcription_minutes",
    ResourceType.AI_TOKENS: "ai_tokens",
}

# Entitlement for workspaces without an entitled subscription.
FREE_TIER_LIMITS: dict[ResourceType, int] = {
    ResourceType.STORAGE: 1 * GIB,
    ResourceType.PROCESSING: 60,
    ResourceType.API_CALLS: 1000,
    ResourceType.TRANSCRIPTION: 30,
    ResourceType.AI_TOKENS: 50000,
}

# Usage cost per unit. Storage is priced per GiB held, the counters per
# unit consumed. Transcription and AI tokens are bundled into the plan price.
UNIT_PRICES: dict[ResourceType, Decimal] = {
    ResourceType.STORAGE: Decimal("0.02"),
    ResourceType.PROCESSING: Decimal("0.001"),
    ResourceType.API_CALLS: Decimal("0.00001"),
    ResourceType.TRANSCRIPTION: Decimal("0"),
    ResourceType.AI_TOKENS: Decimal("0"),
}

DEFAULT_SUGGESTION = "Please upgrade your plan for more resources."

QUOTA_SUGGESTIONS: dict[ResourceType, str] = {
    ResourceType.STORAGE: "Delete old files or upgrade your plan for more storage.",
    ResourceType.PROCESSING: DEFAULT_SUGGESTION,
    ResourceType.API_CALLS: DEFAULT_SUGGESTION,
    ResourceType.TRANSCRIPTION: "Wait until next month or upgrade for more transcription minutes.",
    ResourceType.AI_TOKENS: "Optimize your AI usage or upgrade for more tokens.",
}


def parse_resource_type(value) -> ResourceType:
    if isinstance(value, ResourceType):
        return value
    try:
        return ResourceType(str(value).strip())
    except ValueError:
        raise ValueError(f"Unsupported resource type: {value}") from None


def verify_resource_tables() -> None:
    expected = set(ResourceType)
    tables = {
        "QUOTA_KEYS": QUOTA_KEYS,
        "SNAPSHOT_COLUMNS": SNAPSHOT_COLUMNS,
        "FREE_TIER_LIMITS": FREE_TIER_LIMITS,
        "UNIT_PRICES": UNIT_PRICES,
        "QUOTA_SUGGESTIONS": QUOTA_SUGGESTIONS,
    }
    drifted = sorted(name for name, table in tables.items() if set(table) != expected)
    if drifted:
        raise RuntimeError(f"Resource tables out of sync with ResourceType: {', '.join(drifted)}")
