"""Magic login data and API schemas.

TokenRecord is the unit the token store persists (one per user).
LogEntry is one row of the login attempt ring buffer. The remaining models
are request/response bodies for the internal magic login API.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

# Issuing IP recorded when no client address is available (e.g. cron sends)
UNKNOWN_IP = "UNKNOWN"


# =============================================================================
# Stored records
# =============================================================================


class TokenRecord(BaseModel):
    """Single active magic login token for a user.

    Attributes:
        token: Opaque alphanumeric token embedded in email links.
        user_id: Owner of the token.
        email: User email at issuance time.
        created_at: Issuance timestamp (UTC).
        expires_at: Absolute expiry (UTC); always after created_at.
        used: True once the token has been consumed.
        used_at: Consumption timestamp, if consumed.
        issuing_ip: Client IP that triggered issuance, or "UNKNOWN".
    """

    model_config = ConfigDict(from_attributes=True)

    token: str = Field(min_length=1)
    user_id: int
    email: str
    created_at: datetime
    expires_at: datetime
    used: bool = False
    used_at: datetime | None = None
    issuing_ip: str = UNKNOWN_IP

    @model_validator(mode="after")
    def check_expiry_after_creation(self) -> "TokenRecord":
        """Reject records whose expiry is not after their creation time."""
        if self.expires_at <= self.created_at:
            msg = "expires_at must be after created_at"
            raise ValueError(msg)
        return self

    def is_expired(self, now: datetime) -> bool:
        """Whether the token expired strictly before ``now``."""
        return self.expires_at < now

    def is_terminal(self, now: datetime) -> bool:
        """Whether the record can no longer authenticate (used or expired)."""
        return self.used or self.is_expired(now)


class LoginStatus(str, Enum):
    """Outcome recorded for a login attempt."""

    SUCCESS = "success"
    FAILED = "failed"


class LogEntry(BaseModel):
    """One login attempt in the attempt log.

    Attributes:
        user_id: Authenticated user, or 0 for failed/anonymous attempts.
        status: success or failed.
        ip_address: Client IP address.
        user_agent: Client User-Agent header.
        timestamp: When the attempt was recorded (UTC).
        data: Auxiliary data (error code/message or token metadata).
    """

    user_id: int
    status: LoginStatus
    ip_address: str
    user_agent: str = ""
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Internal API schemas
# =============================================================================


class EmailLinksRequest(BaseModel):
    """Request body for POST /magic-login/email-links."""

    model_config = ConfigDict(extra="forbid")

    html: str
    user_id: int = Field(gt=0)
    email: EmailStr
    issuing_ip: str | None = Field(default=None, max_length=45)


class EmailLinksResponse(BaseModel):
    """Rewritten email body returned to the email pipeline."""

    html: str
    token_issued: bool
    links_rewritten: int = 0


class TokenStatisticsResponse(BaseModel):
    """Aggregate token counts."""

    total: int
    used: int
    active: int
    expired: int


class CleanupResponse(BaseModel):
    """Result of a manual sweep."""

    deleted: int
