"""
Pydantic schemas for request/response validation.

Every JSON response uses the same envelope: success, message, data.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# Rejects consecutive dots, leading/trailing dots in the local part
EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$"
)


def validate_email_address(v: str) -> str:
    """Strip surrounding whitespace and check the address shape. Case is kept."""
    v = v.strip()
    if not EMAIL_REGEX.match(v):
        raise ValueError("must be a valid email address")
    return v


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SubscribeRequest(BaseModel):
    email: str = Field(..., max_length=320, description="Subscriber email address")
    name: Optional[str] = Field(
        None,
        max_length=200,
        description="Name used in the welcome email greeting (not stored)"
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return validate_email_address(v)

    model_config = {
        "json_schema_extra": {
            "examples": [{"email": "a@x.com", "name": "Ada"}]
        }
    }


class UnsubscribeRequest(BaseModel):
    email: str = Field(..., max_length=320, description="Email address to remove")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return validate_email_address(v)


class SendEmailRequest(BaseModel):
    """Direct message through the configured relay."""
    to: str = Field(..., max_length=320, description="Recipient address")
    subject: str = Field(..., min_length=1, max_length=998, description="Subject line")
    body: str = Field(..., description="Plain-text body")

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        return validate_email_address(v)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ApiResponse(BaseModel):
    """Response envelope shared by every endpoint."""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Human-readable outcome")
    data: Optional[Any] = Field(None, description="Operation payload")


class EmailData(BaseModel):
    email: str


class EmailList(BaseModel):
    emails: list[str] = Field(default_factory=list)


class SubscribeResponse(ApiResponse):
    data: Optional[EmailData] = None


class UnsubscribeResponse(ApiResponse):
    data: Optional[EmailData] = None


class SubscribersResponse(ApiResponse):
    data: EmailList = Field(default_factory=EmailList)


class HealthResponse(BaseModel):
    """Response model for the readiness probe."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
