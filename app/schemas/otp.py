from pydantic import BaseModel, EmailStr, Field
from typing import Dict, Literal, Optional, Union
from enum import Enum

from app.models.otp import OTPPurpose


class OTPFailure(str, Enum):
    OTP_NOT_FOUND = "OTP_NOT_FOUND"
    OTP_EXPIRED = "OTP_EXPIRED"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    INVALID_OTP = "INVALID_OTP"
    RATE_LIMITED = "RATE_LIMITED"


class IssueOptions(BaseModel):
    """Per-call overrides of the configured OTP defaults"""
    length: Optional[int] = Field(None, ge=1, le=12)
    expiry_minutes: Optional[float] = Field(None, gt=0)
    max_attempts: Optional[int] = Field(None, ge=1)
    user_id: Optional[str] = None


# ---------- service results ----------

class OTPIssued(BaseModel):
    status: Literal["issued"] = "issued"
    otp_code: str
    expiry_minutes: Union[int, float]
    max_attempts: int


class OTPRateLimited(BaseModel):
    status: Literal["rate_limited"] = "rate_limited"
    error: OTPFailure = OTPFailure.RATE_LIMITED
    message: str
    remaining_seconds: int


class RateLimitCheck(BaseModel):
    can_request: bool
    error: Optional[OTPFailure] = None
    message: Optional[str] = None
    remaining_seconds: Optional[int] = None


class VerifyResult(BaseModel):
    success: bool
    error: Optional[OTPFailure] = None
    message: str
    attempts_left: Optional[int] = None


class OTPStatus(BaseModel):
    exists: bool
    is_expired: Optional[bool] = None
    remaining_seconds: Optional[int] = None
    attempts: Optional[int] = None
    max_attempts: Optional[int] = None
    attempts_left: Optional[int] = None


class ClearResult(BaseModel):
    cleared: int


class OTPStats(BaseModel):
    total_active: int
    by_purpose: Dict[str, int] = {}
    expired: int = 0


# ---------- HTTP payloads ----------

class OTPRequest(BaseModel):
    identifier: EmailStr
    purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION
    user_id: Optional[str] = None


class OTPVerifyRequest(BaseModel):
    identifier: EmailStr
    code: str = Field(..., pattern=r"^[0-9]+$")
    purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION


class OTPRequestResponse(BaseModel):
    message: str
    expiry_minutes: Union[int, float]
    max_attempts: int


class OTPVerifyResponse(BaseModel):
    success: bool
    message: str
