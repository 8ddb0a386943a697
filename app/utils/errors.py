from typing import Any, Dict, Optional


class OTPError(Exception):
    """
    Raised by the HTTP layer to turn an OTP failure result into a response.
    The service itself never raises it.
    """
    def __init__(self, message="OTP error", code=None, status=400, extra: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.status = status
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.code, "message": self.message}
        body.update(self.extra)
        return body
