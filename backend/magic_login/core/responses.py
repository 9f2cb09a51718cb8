"""JSON bodies returned by the internal API.

Successful calls wrap their payload as ``{"data": ...}``. Every error, from
route handlers, request validation or the rate limiter, is rendered as
``{"error": {"code": ..., "message": ..., "details": ...}}``.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Wrapper for a successful payload."""

    data: T


class ErrorDetail(BaseModel):
    """Body of the ``error`` key.

    ``details`` is only filled for request validation failures, one entry
    per offending field.
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
