import pytest

from app.core.config import Settings
from app.services.otp import OTPService
from app.services.otp_store import MemoryOTPStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def otp_settings():
    return Settings(
        OTP_LENGTH=6,
        OTP_EXPIRY_MINUTES=10,
        OTP_MAX_ATTEMPTS=5,
        OTP_RESEND_COOLDOWN_MINUTES=2,
        OTP_STORE_BACKEND="memory",
    )


@pytest.fixture
async def store():
    store = MemoryOTPStore()
    yield store
    store.close()


@pytest.fixture
async def service(store, otp_settings, clock):
    service = OTPService(store, otp_settings, clock=clock)
    yield service
    service.shutdown()
