"""
shared/utils/email.py
Transactional email via Resend.
Sends are awaited with a fixed timeout and never retried.
"""

import asyncio
import logging
from datetime import datetime, timezone

import resend

from config.settings import settings

logger = logging.getLogger(__name__)


class EmailConfigurationError(RuntimeError):
    """Email delivery is not configured (missing API key or sender)."""


class EmailDeliveryError(RuntimeError):
    """The provider rejected the message, errored, or timed out."""


def _sender() -> str:
    return f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"


def _send_sync(params: dict) -> str:
    resend.api_key = settings.RESEND_API_KEY
    result = resend.Emails.send(params)
    return result.get("id", "") if isinstance(result, dict) else getattr(result, "id", "")


async def send_email(to_email: str, subject: str, text_body: str, html_body: str) -> str:
    """
    Send a message with plain-text and HTML bodies. Returns the provider message id.
    Raises EmailConfigurationError before any network call if not configured.
    """
    if not settings.RESEND_API_KEY or not settings.EMAIL_FROM:
        raise EmailConfigurationError("RESEND_API_KEY and EMAIL_FROM must be set to send email")

    params = {
        "from": _sender(),
        "to": [to_email],
        "subject": subject,
        "text": text_body,
        "html": html_body,
    }
    try:
        message_id = await asyncio.wait_for(
            asyncio.to_thread(_send_sync, params),
            timeout=settings.EMAIL_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise EmailDeliveryError(
            f"Email to {to_email} timed out after {settings.EMAIL_TIMEOUT_SECONDS:g}s"
        ) from e
    except Exception as e:
        raise EmailDeliveryError(f"Email to {to_email} failed: {e}") from e

    logger.info(f"Email '{subject}' sent to {to_email} (id={message_id})")
    return message_id


# ── Templates ─────────────────────────────────────────────────

def render_otp_email(name: str, otp: str) -> tuple[str, str, str]:
    """Returns (subject, text, html) for the verification code email."""
    minutes = settings.OTP_EXPIRE_MINUTES
    year = datetime.now(timezone.utc).year
    subject = "Verify Your Email - NextDrive Bihar"

    text = (
        f"Hello {name},\n\n"
        "Thank you for registering with NextDrive Bihar.\n\n"
        f"Your OTP for email verification is: {otp}\n\n"
        f"This OTP is valid for {minutes} minutes.\n"
        "Please do not share this code with anyone.\n\n"
        "If you did not request this verification, please ignore this email.\n\n"
        "Best regards,\n"
        "NextDrive Bihar Team\n"
    )

    html = f"""
<div style="font-family: Arial, sans-serif; background:#f4f6f8; padding:30px">
  <div style="max-width:600px; margin:auto; background:#ffffff; padding:25px; border-radius:8px">
    <h2 style="color:#1e293b; text-align:center;">Email Verification</h2>
    <p>Hello <strong>{name}</strong>,</p>
    <p>Thank you for registering with <strong>NextDrive Bihar</strong>.
       Please use the OTP below to verify your email address.</p>
    <div style="text-align:center; margin:30px 0;">
      <span style="font-size:32px; font-weight:bold; letter-spacing:6px; color:#2563eb;">{otp}</span>
    </div>
    <p style="color:#475569;">This OTP is valid for <strong>{minutes} minutes</strong>.
       Do not share this code with anyone.</p>
    <p style="font-size:14px; color:#64748b;">If you did not request this verification,
       you can safely ignore this email.</p>
    <hr />
    <p style="font-size:12px; color:#94a3b8; text-align:center;">
      &copy; {year} NextDrive Bihar. All rights reserved.</p>
  </div>
</div>
"""
    return subject, text, html
