# storefront/contracts/errors.py
from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorEnvelope(BaseModel):
    code: str = Field(min_length=1)
    message: str = Field(min_length=1)
    details: Optional[dict[str, Any]] = None


def error(code: str, message: str, details: Any = None) -> dict[str, Any]:
    det: Optional[dict[str, Any]]
    if details is None:
        det = None
    elif isinstance(details, dict):
        det = details
    else:
        try:
            json.dumps(details, ensure_ascii=False)
            det = {"value": details}
        except (TypeError, ValueError):
            det = {"value": str(details)}
    return ErrorEnvelope(code=code, message=message, details=det).model_dump(exclude_none=True)


class StorefrontError(Exception):
    """Base for every failure a route may surface to a client."""

    status_code = 500
    default_code = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def envelope(self) -> dict[str, Any]:
        return error(self.code, self.message, self.details)


class ValidationError(StorefrontError):
    status_code = 400
    default_code = "validation_failed"


class NotFoundError(StorefrontError):
    status_code = 404
    default_code = "not_found"


class ConflictError(StorefrontError):
    status_code = 409
    default_code = "conflict"


class AuthorizationError(StorefrontError):
    status_code = 401
    default_code = "unauthorized"

    def __init__(self, message: str, *, status_code: int = 401, code: str | None = None, details: Any = None) -> None:
        super().__init__(message, code=code, details=details)
        self.status_code = status_code


class UpstreamError(StorefrontError):
    status_code = 500
    default_code = "upstream_failed"


class ConfigurationError(StorefrontError):
    status_code = 500
    default_code = "misconfigured"
