from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from typing import Any, Optional
import logging
import secrets

from app.core.config import settings
from app.models.otp import OTPPurpose
from app.schemas.otp import (
    ClearResult, IssueOptions, OTPFailure, OTPRateLimited, OTPRequest, OTPRequestResponse,
    OTPStats, OTPStatus, OTPVerifyRequest, OTPVerifyResponse
)
from app.services.otp import OTPService
from app.utils.email import send_otp_email
from app.utils.errors import OTPError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])

FAILURE_STATUS = {
    OTPFailure.OTP_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OTPFailure.OTP_EXPIRED: status.HTTP_410_GONE,
    OTPFailure.INVALID_OTP: status.HTTP_400_BAD_REQUEST,
    OTPFailure.MAX_ATTEMPTS_EXCEEDED: status.HTTP_403_FORBIDDEN,
    OTPFailure.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
}

def get_otp_service(request: Request) -> OTPService:
    return request.app.state.otp_service

def require_admin_key(x_admin_key: Optional[str] = Header(None)) -> None:
    if not settings.ADMIN_API_KEY or not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin key required",
        )

def _normalize(identifier: str) -> str:
    return identifier.strip().lower()

@router.post("/request", response_model=OTPRequestResponse)
async def request_otp(data: OTPRequest, service: OTPService = Depends(get_otp_service)) -> Any:
    identifier = _normalize(data.identifier)
    result = await service.request_otp(identifier, data.purpose, IssueOptions(user_id=data.user_id))

    if isinstance(result, OTPRateLimited):
        raise OTPError(
            result.message,
            code=result.error.value,
            status=FAILURE_STATUS[result.error],
            extra={"remaining_seconds": result.remaining_seconds},
        )

    # the code only ever leaves through email
    sent = await send_otp_email(identifier, result.otp_code, data.purpose.value, result.expiry_minutes)
    if not sent:
        logger.warning(f"OTP for {data.purpose.value} issued but email delivery failed")

    return {
        "message": "OTP sent successfully",
        "expiry_minutes": result.expiry_minutes,
        "max_attempts": result.max_attempts,
    }

@router.post("/verify", response_model=OTPVerifyResponse)
async def verify_otp(data: OTPVerifyRequest, service: OTPService = Depends(get_otp_service)) -> Any:
    result = await service.verify(_normalize(data.identifier), data.code, data.purpose)

    if not result.success:
        extra = {}
        if result.attempts_left is not None:
            extra["attempts_left"] = result.attempts_left
        raise OTPError(result.message, code=result.error.value, status=FAILURE_STATUS[result.error], extra=extra)

    return {"success": True, "message": result.message}

@router.get("/status", response_model=OTPStatus, response_model_exclude_none=True)
async def otp_status(
    identifier: str = Query(...),
    purpose: OTPPurpose = Query(OTPPurpose.EMAIL_VERIFICATION),
    service: OTPService = Depends(get_otp_service)
) -> Any:
    return await service.status(_normalize(identifier), purpose)

@router.get("/stats", response_model=OTPStats, dependencies=[Depends(require_admin_key)])
async def otp_stats(service: OTPService = Depends(get_otp_service)) -> Any:
    return service.stats()

@router.delete("/{identifier}", response_model=ClearResult, dependencies=[Depends(require_admin_key)])
async def clear_otps(identifier: str, service: OTPService = Depends(get_otp_service)) -> Any:
    """
    Drop every outstanding code for an identifier, e.g. when the account is deleted
    """
    return await service.clear_all(_normalize(identifier))
