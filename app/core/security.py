import secrets

DIGITS = "0123456789"


def generate_otp(length: int = 6) -> str:
    """Return a numeric code of `length` digits drawn from the OS CSPRNG."""
    return "".join(secrets.choice(DIGITS) for _ in range(length))


def codes_match(expected: str, submitted: str) -> bool:
    # Constant-time compare
    return secrets.compare_digest(expected.encode("utf-8"), submitted.encode("utf-8"))
