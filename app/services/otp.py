import math
import time
import logging
from typing import Callable, Optional, Union

from app.core.config import Settings
from app.core.security import generate_otp, codes_match
from app.models.otp import OTPPurpose, OTPRecord, otp_key
from app.schemas.otp import (
    ClearResult, IssueOptions, OTPFailure, OTPIssued, OTPRateLimited, OTPStats,
    OTPStatus, RateLimitCheck, VerifyResult
)
from app.services.otp_store import OTPStore

logger = logging.getLogger(__name__)

MESSAGES = {
    OTPFailure.OTP_NOT_FOUND: "OTP not found or has expired",
    OTPFailure.OTP_EXPIRED: "OTP has expired. Please request a new one.",
    OTPFailure.MAX_ATTEMPTS_EXCEEDED: "Too many failed attempts. Please request a new OTP.",
    OTPFailure.INVALID_OTP: "Invalid OTP code",
}


def _failure(kind: OTPFailure, **extra) -> VerifyResult:
    return VerifyResult(success=False, error=kind, message=MESSAGES[kind], **extra)


class OTPService:
    """
    Issues, rate-limits, verifies and expires one-time codes.

    One instance is built at startup and shared through `app.state`. The
    public methods are coroutines but never await, so each call reads and
    mutates the store in a single uninterrupted step on the event loop.
    Failures come back as result objects, never as exceptions.
    """

    def __init__(self, store: OTPStore, settings: Settings, clock: Callable[[], float] = time.time):
        self.store = store
        self.settings = settings
        self.clock = clock

    def generate(self, length: Optional[int] = None) -> str:
        return generate_otp(length or self.settings.OTP_LENGTH)

    async def issue(
        self,
        identifier: str,
        purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION,
        options: Optional[IssueOptions] = None,
    ) -> OTPIssued:
        return self._issue(identifier, OTPPurpose(purpose), options or IssueOptions())

    async def can_request(
        self, identifier: str, purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION
    ) -> RateLimitCheck:
        return self._check_cooldown(identifier, OTPPurpose(purpose))

    async def request_otp(
        self,
        identifier: str,
        purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION,
        options: Optional[IssueOptions] = None,
    ) -> Union[OTPIssued, OTPRateLimited]:
        """Cooldown check and issuance as a single step."""
        purpose = OTPPurpose(purpose)
        check = self._check_cooldown(identifier, purpose)
        if not check.can_request:
            return OTPRateLimited(message=check.message, remaining_seconds=check.remaining_seconds)
        return self._issue(identifier, purpose, options or IssueOptions())

    async def verify(
        self, identifier: str, code: str, purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION
    ) -> VerifyResult:
        purpose = OTPPurpose(purpose)
        key = otp_key(identifier, purpose)
        record = self.store.get(key)

        if record is None:
            return _failure(OTPFailure.OTP_NOT_FOUND)

        now = self.clock()
        if record.is_expired(now):
            self.store.delete(key)
            logger.info(f"OTP for {purpose.value} expired before verification")
            return _failure(OTPFailure.OTP_EXPIRED)

        # already at the ceiling: same as absent
        if record.exhausted:
            self.store.delete(key)
            return _failure(OTPFailure.OTP_NOT_FOUND)

        record.attempts += 1
        record.last_attempt = now

        if codes_match(record.code, str(code).strip()):
            self.store.delete(key)
            logger.info(f"OTP for {purpose.value} verified after {record.attempts} attempt(s)")
            return VerifyResult(success=True, message="OTP verified successfully")

        if record.exhausted:
            self.store.delete(key)
            logger.warning(f"OTP for {purpose.value} invalidated after {record.attempts} failed attempts")
            return _failure(OTPFailure.MAX_ATTEMPTS_EXCEEDED)

        self.store.update(key, record)
        return _failure(OTPFailure.INVALID_OTP, attempts_left=record.attempts_left)

    async def status(
        self, identifier: str, purpose: OTPPurpose = OTPPurpose.EMAIL_VERIFICATION
    ) -> OTPStatus:
        record = self.store.get(otp_key(identifier, purpose))
        if record is None:
            return OTPStatus(exists=False)

        now = self.clock()
        return OTPStatus(
            exists=True,
            is_expired=record.is_expired(now),
            remaining_seconds=record.remaining_seconds(now),
            attempts=record.attempts,
            max_attempts=record.max_attempts,
            attempts_left=record.attempts_left,
        )

    async def clear_all(self, identifier: str) -> ClearResult:
        keys = self.store.keys(f"{identifier}:")
        for key in keys:
            self.store.delete(key)
        if keys:
            logger.info(f"Cleared {len(keys)} OTP record(s) for an identifier")
        return ClearResult(cleared=len(keys))

    def stats(self) -> OTPStats:
        now = self.clock()
        by_purpose = {}
        expired = 0
        records = self.store.records()
        for record in records:
            by_purpose[record.purpose.value] = by_purpose.get(record.purpose.value, 0) + 1
            if record.is_expired(now):
                expired += 1
        return OTPStats(total_active=len(records), by_purpose=by_purpose, expired=expired)

    def shutdown(self) -> None:
        self.store.close()

    def _check_cooldown(self, identifier: str, purpose: OTPPurpose) -> RateLimitCheck:
        record = self.store.get(otp_key(identifier, purpose))
        if record is None:
            return RateLimitCheck(can_request=True)

        cooldown = self.settings.OTP_RESEND_COOLDOWN_MINUTES * 60
        elapsed = self.clock() - record.created_at
        if elapsed < cooldown:
            remaining = math.ceil(cooldown - elapsed)
            return RateLimitCheck(
                can_request=False,
                error=OTPFailure.RATE_LIMITED,
                message=f"Please wait {remaining} seconds before requesting a new OTP",
                remaining_seconds=remaining,
            )

        return RateLimitCheck(can_request=True)

    def _issue(self, identifier: str, purpose: OTPPurpose, options: IssueOptions) -> OTPIssued:
        expiry_minutes = options.expiry_minutes or self.settings.OTP_EXPIRY_MINUTES
        if float(expiry_minutes).is_integer():
            expiry_minutes = int(expiry_minutes)
        max_attempts = options.max_attempts or self.settings.OTP_MAX_ATTEMPTS
        now = self.clock()

        record = OTPRecord(
            code=self.generate(options.length),
            purpose=purpose,
            expiry_time=now + expiry_minutes * 60,
            max_attempts=max_attempts,
            created_at=now,
            user_id=options.user_id if purpose == OTPPurpose.PASSWORD_CHANGE else None,
        )
        self.store.put(otp_key(identifier, purpose), record, expiry_minutes * 60)
        logger.info(f"Issued {purpose.value} OTP, expires in {expiry_minutes} minutes")

        return OTPIssued(otp_code=record.code, expiry_minutes=expiry_minutes, max_attempts=max_attempts)
