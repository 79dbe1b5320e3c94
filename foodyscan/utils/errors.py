"""Typed errors raised by services and converted to JSON by the blueprint."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
CREDITS_EXHAUSTED_MESSAGE = "AI credits exhausted. Please add credits to continue."


@dataclass
class ApiError(Exception):
    """Base error carrying the HTTP status returned to the client."""

    message: str
    status_code: int = 500

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message


class ValidationError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 400)


class NotFoundError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 404)


class PaymentError(ApiError):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message, status_code)


class UpstreamError(ApiError):
    """A third-party call failed.

    Rate limiting and exhausted credits keep their upstream status so the client
    can show the right message; every other failure is reported as a 500.
    """

    def __init__(self, message: str, upstream_status: Optional[int] = None) -> None:
        status = upstream_status if upstream_status in (402, 429) else 500
        super().__init__(upstream_message(upstream_status) or message, status)
        self.upstream_status = upstream_status


def upstream_message(status: Optional[int]) -> Optional[str]:
    """Return the user-facing text for well-known upstream status codes."""

    if status == 429:
        return RATE_LIMIT_MESSAGE
    if status == 402:
        return CREDITS_EXHAUSTED_MESSAGE
    return None
