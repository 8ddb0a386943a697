import asyncio

import pytest

from app.models.otp import OTPPurpose
from app.schemas.otp import IssueOptions, OTPFailure, OTPIssued, OTPRateLimited
from app.services.otp import OTPService
from app.services.otp_store import MemoryOTPStore

EMAIL = "a@x.com"
EV = OTPPurpose.EMAIL_VERIFICATION


def wrong(code: str) -> str:
    return "".join(str((int(digit) + 1) % 10) for digit in code)


async def test_issue_returns_code_and_defaults(service):
    issued = await service.issue(EMAIL, EV)

    assert len(issued.otp_code) == 6 and issued.otp_code.isdigit()
    assert issued.expiry_minutes == 10
    assert issued.max_attempts == 5


async def test_issue_options_override_defaults(service, store):
    issued = await service.issue(EMAIL, EV, IssueOptions(length=8, expiry_minutes=3, max_attempts=2))

    assert len(issued.otp_code) == 8
    assert issued.expiry_minutes == 3
    assert issued.max_attempts == 2
    record = store.get("a@x.com:email_verification")
    assert record.expiry_time - record.created_at == 180


async def test_user_id_kept_only_for_password_change(service, store):
    await service.issue(EMAIL, OTPPurpose.PASSWORD_CHANGE, IssueOptions(user_id="u-42"))
    await service.issue(EMAIL, OTPPurpose.PASSWORD_RESET, IssueOptions(user_id="u-42"))

    assert store.get("a@x.com:password_change").user_id == "u-42"
    assert store.get("a@x.com:password_reset").user_id is None


async def test_issue_accepts_plain_purpose_string(service, store):
    await service.issue(EMAIL, "two_factor")
    assert store.get("a@x.com:two_factor") is not None


async def test_verify_success_then_not_found(service):
    issued = await service.issue(EMAIL, EV)

    result = await service.verify(EMAIL, issued.otp_code, EV)
    assert result.success
    assert result.error is None

    again = await service.verify(EMAIL, issued.otp_code, EV)
    assert not again.success
    assert again.error == OTPFailure.OTP_NOT_FOUND


async def test_verify_never_issued(service):
    result = await service.verify(EMAIL, "123456", EV)

    assert result.error == OTPFailure.OTP_NOT_FOUND
    assert result.message == "OTP not found or has expired"


async def test_wrong_code_until_attempts_exhausted(service):
    issued = await service.issue(EMAIL, EV)
    bad = wrong(issued.otp_code)

    left = []
    for _ in range(4):
        result = await service.verify(EMAIL, bad, EV)
        assert result.error == OTPFailure.INVALID_OTP
        left.append(result.attempts_left)
    assert left == [4, 3, 2, 1]

    last = await service.verify(EMAIL, bad, EV)
    assert last.error == OTPFailure.MAX_ATTEMPTS_EXCEEDED
    assert last.attempts_left is None

    after = await service.verify(EMAIL, issued.otp_code, EV)
    assert after.error == OTPFailure.OTP_NOT_FOUND


async def test_correct_code_on_last_allowed_attempt(service):
    issued = await service.issue(EMAIL, EV, IssueOptions(max_attempts=3))
    for _ in range(2):
        await service.verify(EMAIL, wrong(issued.otp_code), EV)

    result = await service.verify(EMAIL, issued.otp_code, EV)
    assert result.success


async def test_expired_code_rejected_even_if_correct(service, clock):
    issued = await service.issue(EMAIL, EV)
    clock.advance(10 * 60 + 1)

    result = await service.verify(EMAIL, issued.otp_code, EV)
    assert result.error == OTPFailure.OTP_EXPIRED

    again = await service.verify(EMAIL, issued.otp_code, EV)
    assert again.error == OTPFailure.OTP_NOT_FOUND


async def test_expired_check_does_not_count_attempt(service, clock, store):
    issued = await service.issue(EMAIL, EV)
    await service.verify(EMAIL, wrong(issued.otp_code), EV)
    clock.advance(601)

    await service.verify(EMAIL, issued.otp_code, EV)
    assert store.get("a@x.com:email_verification") is None


async def test_exhausted_record_treated_as_absent(service, store):
    issued = await service.issue(EMAIL, EV)
    record = store.get("a@x.com:email_verification")
    record.attempts = record.max_attempts

    result = await service.verify(EMAIL, issued.otp_code, EV)
    assert result.error == OTPFailure.OTP_NOT_FOUND
    assert store.get("a@x.com:email_verification") is None


async def test_verify_strips_whitespace(service):
    issued = await service.issue(EMAIL, EV)
    result = await service.verify(EMAIL, f" {issued.otp_code} ", EV)
    assert result.success


async def test_reissue_invalidates_previous_code(service, clock):
    first = await service.issue(EMAIL, EV)
    clock.advance(1)
    second = await service.issue(EMAIL, EV)
    while second.otp_code == first.otp_code:
        second = await service.issue(EMAIL, EV)

    old = await service.verify(EMAIL, first.otp_code, EV)
    assert old.error == OTPFailure.INVALID_OTP

    new = await service.verify(EMAIL, second.otp_code, EV)
    assert new.success


async def test_reissue_resets_attempts(service):
    issued = await service.issue(EMAIL, EV)
    await service.verify(EMAIL, wrong(issued.otp_code), EV)

    await service.issue(EMAIL, EV)
    status = await service.status(EMAIL, EV)
    assert status.attempts == 0
    assert status.attempts_left == 5


async def test_purposes_are_independent(service):
    verification = await service.issue(EMAIL, EV)
    reset = await service.issue(EMAIL, OTPPurpose.PASSWORD_RESET)

    assert (await service.verify(EMAIL, verification.otp_code, EV)).success
    assert (await service.verify(EMAIL, reset.otp_code, OTPPurpose.PASSWORD_RESET)).success


async def test_can_request_cooldown(service, clock):
    assert (await service.can_request(EMAIL, EV)).can_request

    await service.issue(EMAIL, EV)
    denied = await service.can_request(EMAIL, EV)
    assert not denied.can_request
    assert denied.error == OTPFailure.RATE_LIMITED
    assert denied.remaining_seconds == 120
    assert denied.message == "Please wait 120 seconds before requesting a new OTP"

    clock.advance(30.5)
    assert (await service.can_request(EMAIL, EV)).remaining_seconds == 90

    clock.advance(90)
    assert (await service.can_request(EMAIL, EV)).can_request


async def test_can_request_is_per_purpose(service):
    await service.issue(EMAIL, EV)
    assert (await service.can_request(EMAIL, OTPPurpose.TWO_FACTOR)).can_request


async def test_request_otp_bundles_cooldown_and_issue(service, clock):
    first = await service.request_otp(EMAIL, EV)
    assert isinstance(first, OTPIssued)
    assert first.status == "issued"

    second = await service.request_otp(EMAIL, EV)
    assert isinstance(second, OTPRateLimited)
    assert second.status == "rate_limited"
    assert second.remaining_seconds == 120

    # the rate-limited request must not replace the live code
    assert (await service.verify(EMAIL, first.otp_code, EV)).success

    clock.advance(121)
    assert isinstance(await service.request_otp(EMAIL, EV), OTPIssued)


async def test_status_does_not_mutate_or_reveal_code(service, clock):
    assert (await service.status(EMAIL, EV)).exists is False

    issued = await service.issue(EMAIL, EV)
    await service.verify(EMAIL, wrong(issued.otp_code), EV)
    clock.advance(60.2)

    status = await service.status(EMAIL, EV)
    assert status.exists
    assert not status.is_expired
    assert status.remaining_seconds == 540
    assert status.attempts == 1
    assert status.max_attempts == 5
    assert status.attempts_left == 4
    assert issued.otp_code not in status.model_dump_json()

    assert (await service.status(EMAIL, EV)) == status


async def test_status_reports_expired_until_evicted(service, clock):
    await service.issue(EMAIL, EV)
    clock.advance(700)

    status = await service.status(EMAIL, EV)
    assert status.exists
    assert status.is_expired
    assert status.remaining_seconds == 0


async def test_clear_all_only_touches_identifier(service):
    await service.issue(EMAIL, EV)
    await service.issue(EMAIL, OTPPurpose.PASSWORD_RESET)
    await service.issue(EMAIL, OTPPurpose.TWO_FACTOR)
    other = await service.issue("b@x.com", EV)

    result = await service.clear_all(EMAIL)
    assert result.cleared == 3

    for purpose in OTPPurpose:
        assert not (await service.status(EMAIL, purpose)).exists
    assert (await service.verify("b@x.com", other.otp_code, EV)).success
    assert (await service.clear_all(EMAIL)).cleared == 0


async def test_clear_all_does_not_match_identifier_prefixes(service):
    await service.issue("a@x.co", EV)
    await service.issue("a@x.com", EV)

    assert (await service.clear_all("a@x.co")).cleared == 1
    assert (await service.status("a@x.com", EV)).exists


async def test_stats(service, clock):
    await service.issue(EMAIL, EV, IssueOptions(expiry_minutes=1))
    await service.issue("b@x.com", EV)
    await service.issue(EMAIL, OTPPurpose.PASSWORD_RESET)
    clock.advance(61)

    stats = service.stats()
    assert stats.total_active == 3
    assert stats.by_purpose == {"email_verification": 2, "password_reset": 1}
    assert stats.expired == 1


async def test_abandoned_code_is_evicted(otp_settings):
    service = OTPService(MemoryOTPStore(), otp_settings)
    await service.issue(EMAIL, EV, IssueOptions(expiry_minutes=0.001))
    await asyncio.sleep(0.2)

    assert not (await service.status(EMAIL, EV)).exists
    assert (await service.verify(EMAIL, "000000", EV)).error == OTPFailure.OTP_NOT_FOUND
    service.shutdown()


async def test_shutdown_cancels_pending_timers(service, store):
    await service.issue(EMAIL, EV)
    await service.issue("b@x.com", EV)
    handles = list(store._timers.values())

    service.shutdown()

    assert handles and all(handle.cancelled() for handle in handles)


async def test_unknown_purpose_rejected(service):
    with pytest.raises(ValueError):
        await service.issue(EMAIL, "newsletter")


async def test_whole_expiry_minutes_reported_as_int(service):
    issued = await service.issue(EMAIL, EV)
    assert isinstance(issued.expiry_minutes, int)
    assert '"expiry_minutes":10,' in issued.model_dump_json()

    fractional = await service.issue(EMAIL, OTPPurpose.TWO_FACTOR, IssueOptions(expiry_minutes=1.5))
    assert fractional.expiry_minutes == 1.5
