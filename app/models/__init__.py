from .otp import OTPPurpose, OTPRecord, otp_key
