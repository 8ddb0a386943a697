import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from starlette.concurrency import run_in_threadpool
from app.core.config import settings

logger = logging.getLogger(__name__)

SUBJECTS = {
    "email_verification": "Verify Your Email Address",
    "password_reset": "Reset Your Password",
    "two_factor": "Your Login Verification Code",
    "password_change": "Confirm Your Password Change",
}

def _deliver(to_email: str, subject: str, html_content: str) -> None:
    message = MIMEMultipart()
    message["From"] = settings.EMAIL_FROM
    message["To"] = to_email
    message["Subject"] = subject

    message.attach(MIMEText(html_content, "html"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(settings.EMAIL_FROM, to_email, message.as_string())

async def send_email(to_email: str, subject: str, html_content: str) -> bool:
    if not settings.SMTP_HOST:
        logger.error("SMTP_HOST is not configured, email not sent")
        return False

    try:
        # smtplib blocks; keep it off the event loop
        await run_in_threadpool(_deliver, to_email, subject, html_content)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Error sending email: {e}")
        return False

def render_otp_email(otp: str, purpose: str, expiry_minutes: float) -> str:
    return f"""
    <html>
    <body>
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Your Verification Code</h2>
            <p>Use the following code to complete your {purpose.replace('_', ' ')}:</p>
            <div style="background-color: #f0f0f0; padding: 15px; text-align: center; font-size: 24px; font-weight: bold; letter-spacing: 5px; margin: 20px 0;">
                {otp}
            </div>
            <p>This code will expire in {expiry_minutes:g} minutes.</p>
            <p>If you didn't request this code, you can safely ignore this email.</p>
        </div>
    </body>
    </html>
    """

async def send_otp_email(email: str, otp: str, purpose: str, expiry_minutes: float = 10) -> bool:
    subject = SUBJECTS.get(purpose, "Verification Code")
    return await send_email(email, subject, render_otp_email(otp, purpose, expiry_minutes))
