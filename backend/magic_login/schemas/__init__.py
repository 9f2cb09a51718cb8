"""Pydantic schemas for stored records and API bodies."""

from magic_login.schemas.magic_login import (
    UNKNOWN_IP,
    CleanupResponse,
    EmailLinksRequest,
    EmailLinksResponse,
    LogEntry,
    LoginStatus,
    TokenRecord,
    TokenStatisticsResponse,
)

__all__ = [
    "UNKNOWN_IP",
    # Stored records
    "LogEntry",
    "LoginStatus",
    "TokenRecord",
    # Internal API
    "CleanupResponse",
    "EmailLinksRequest",
    "EmailLinksResponse",
    "TokenStatisticsResponse",
]
