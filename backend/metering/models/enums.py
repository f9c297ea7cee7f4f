from enum import Enum

# Stored as strings (native enums disabled for easier evolution).


class ResourceType(str, Enum):
    # Closed set. Adding a member means updating the free-tier defaults,
    # the pricing table and the quota suggestions in metering.usage.resources.
    STORAGE = "storage"
    PROCESSING = "processing"
    API_CALLS = "apiCalls"
    TRANSCRIPTION = "transcription"
    AI_TOKENS = "aiTokens"


class SubscriptionStatusEnum(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ReportPeriodEnum(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class UploadStatusEnum(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETED = "deleted"


class BillingPeriodEnum(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
