"""Pydantic models for the XS Card API.

Request bodies are validated here; business rules that need the document
store (capacity, ownership, plan membership) live in the services.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# INPUT VALIDATION PATTERNS
# =============================================================================

VERSION_PATTERN = r"^\d+(\.\d+)*$"
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# =============================================================================
# REQUEST MODELS (Input Validation)
# =============================================================================

class AttendeeDetail(BaseModel):
    """One attendee in a bulk registration."""
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=320)
    phone: Optional[str] = Field(default=None, max_length=40)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid attendee email")
        return v.lower()


class BulkRegistrationCreate(BaseModel):
    """Request to register several attendees for one event."""
    quantity: int
    attendeeDetails: List[AttendeeDetail]
    paymentMethod: Optional[str] = Field(default=None, max_length=40)


class IosVersionCheckRequest(BaseModel):
    currentVersion: Optional[str] = Field(default=None, max_length=32)
    currentBuildNumber: Optional[str] = Field(default=None, max_length=16)

    @field_validator("currentBuildNumber", mode="before")
    @classmethod
    def coerce_build(cls, v):
        # clients send the build number as either a string or an int
        return str(v) if isinstance(v, int) else v


class IosVersionRegisterRequest(BaseModel):
    """Admin request to publish a new iOS version."""
    version: str = Field(..., pattern=VERSION_PATTERN, max_length=32)
    buildNumber: Optional[int] = Field(default=None, ge=0)
    versionCode: Optional[int] = Field(default=None, ge=0)
    isMinimumRequired: bool = False
    updateMessage: Optional[str] = Field(default=None, max_length=500)
    updateUrl: Optional[str] = Field(default=None, max_length=500)
    releaseNotes: Optional[str] = Field(default=None, max_length=5000)
    publishedAt: Optional[datetime] = None


class PlanChangeRequest(BaseModel):
    """Request to preview or apply a plan change."""
    currentPlanId: Optional[str] = Field(default=None, max_length=40)
    newPlanId: Optional[str] = Field(default=None, max_length=40)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class ApiResponse(BaseModel):
    """Standard success envelope."""
    success: bool = True
    message: Optional[str] = None
    data: Any = None


class ErrorResponse(BaseModel):
    """Standard error response format."""
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None


class HealthStatus(BaseModel):
    """Health check response."""
    status: str  # 'healthy', 'degraded', 'unhealthy'
    firebase: Dict[str, Any]
    version: str
    timestamp: datetime
