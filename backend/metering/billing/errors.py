"""
Errors raised by subscription and billing operations.

Quota denials are not errors; they are returned as QuotaDecision values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class BillingError(Exception):
    code: str
    message: str
    status_code: int

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFoundError(BillingError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            code=f"{resource}_not_found",
            message=f"{resource.capitalize()} {identifier} not found",
            status_code=404,
        )
        self.resource = resource
        self.identifier = identifier


class InvalidStateError(BillingError):
    def __init__(self, message: str, *, current_status: str | None = None):
        super().__init__(code="invalid_state", message=message, status_code=409)
        self.current_status = current_status

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.current_status:
            payload["current_status"] = self.current_status
        return payload


class ProrationInputError(BillingError):
    def __init__(self, message: str):
        super().__init__(code="invalid_proration_input", message=message, status_code=400)
