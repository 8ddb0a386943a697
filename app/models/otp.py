import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OTPPurpose(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    TWO_FACTOR = "two_factor"
    PASSWORD_CHANGE = "password_change"


def otp_key(identifier: str, purpose: OTPPurpose) -> str:
    return f"{identifier}:{OTPPurpose(purpose).value}"


class OTPRecord(BaseModel):
    """
    A single issued code. Times are epoch seconds.

    Records live only in an OTP store; there is at most one per
    (identifier, purpose) key and a newer one replaces the older.
    """
    code: str
    purpose: OTPPurpose
    expiry_time: float
    attempts: int = 0
    max_attempts: int
    created_at: float
    last_attempt: Optional[float] = None
    user_id: Optional[str] = None  # password_change only

    def is_expired(self, now: float) -> bool:
        return now > self.expiry_time

    def remaining_seconds(self, now: float) -> int:
        return max(0, math.ceil(self.expiry_time - now))

    @property
    def attempts_left(self) -> int:
        return self.max_attempts - self.attempts

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts
