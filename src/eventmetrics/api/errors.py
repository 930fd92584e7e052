"""Reusable error primitives for API exception handling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from fastapi import Request, status
from fastapi.responses import JSONResponse


@dataclass(slots=True)
class ApiError(Exception):
    """Structured application-level error for HTTP handlers."""

    status_code: int
    code: str
    message: str
    headers: Mapping[str, str] | None = None

    def to_response(self) -> JSONResponse:
        """Materialise the error into a ``JSONResponse`` instance."""

        return JSONResponse(
            status_code=self.status_code,
            content={"error": {"code": self.code, "message": self.message}},
            headers=dict(self.headers or {}),
        )


async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    """Convert :class:`ApiError` exceptions into JSON payloads."""

    return exc.to_response()


def not_found_error(message: str) -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, "not_found", message)


def invalid_event_error(message: str) -> ApiError:
    """The event lacks the settings needed to generate statistics."""

    return ApiError(status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_event", message)


def service_overload_error(retry_after: int) -> ApiError:
    return ApiError(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "service_overload",
        "The replicas are overloaded, try again later",
        headers={"Retry-After": str(retry_after)},
    )


__all__ = [
    "ApiError",
    "api_error_handler",
    "invalid_event_error",
    "not_found_error",
    "service_overload_error",
]
