"""Typed failures raised by the scheduling services.

The services stay transport-agnostic: each error carries a machine-readable
``code`` and the HTTP ``status`` the API layer should answer with.
"""

from __future__ import annotations

from typing import Any

from workshop.domain.models import ConflictResult


class SchedulingError(Exception):
    status: int = 400
    code: str = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(SchedulingError):
    status = 400
    code = "VALIDATION_ERROR"


class NotFoundError(SchedulingError):
    status = 404
    code = "NOT_FOUND"


class ConflictError(SchedulingError):
    """A machine or operator would be double-booked."""

    status = 409

    def __init__(self, result: ConflictResult, message: str | None = None) -> None:
        if not result.has_conflict or result.conflict_data is None:
            raise ValueError("ConflictError requires a conflicting result")
        kind = result.conflict_type
        super().__init__(
            message or f"{kind.label} scheduling conflict detected",
            code=f"{kind.value.upper()}_CONFLICT",
            details=result.conflict_data.model_dump(
                mode="json", by_alias=True, exclude_none=True
            ),
        )
        self.result = result

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, "conflict": self.details}


class StoreError(SchedulingError):
    status = 500
    code = "STORE_ERROR"
