"""
Email Service for Lynkby

Sends sign-in links and one-time codes through Resend. In development
without an API key the link or code is written to the log instead, which
is the only place a plaintext credential is ever logged.

Callers decide what a delivery failure means; this module only raises
EmailDeliveryError.
"""

import logging

import resend
from fastapi.concurrency import run_in_threadpool

from app.core.config import Environment, Settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """The email provider did not accept the message."""


def _dev_delivery(settings: Settings) -> bool:
    return (
        not settings.resend_api_key.get_secret_value()
        and settings.environment == Environment.DEVELOPMENT
    )


async def _send(settings: Settings, to: str, subject: str, html: str, text: str) -> None:
    api_key = settings.resend_api_key.get_secret_value()
    if not api_key:
        raise EmailDeliveryError("RESEND_API_KEY is not configured")

    resend.api_key = api_key
    params = {
        "from": settings.from_email,
        "to": [to],
        "subject": subject,
        "html": html,
        "text": text,
    }

    try:
        await run_in_threadpool(resend.Emails.send, params)
    except Exception as exc:
        raise EmailDeliveryError(str(exc)) from exc

    logger.info("[EMAIL] %s sent to %s", subject, to)


def _layout(settings: Settings, title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>{title}</title>
    </head>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #111; max-width: 560px; margin: 0 auto; padding: 20px;">
        <h1 style="font-size: 22px;">{settings.app_name}</h1>
        {body}
        <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
        <p style="color: #666; font-size: 13px;">
            If you didn't request this, you can safely ignore this email.<br>
            Questions? Contact <a href="mailto:{settings.support_email}">{settings.support_email}</a>
        </p>
    </body>
    </html>
    """


async def send_magic_link_email(
    settings: Settings,
    email: str,
    magic_link_url: str,
    expires_in_minutes: int,
) -> None:
    """Send a sign-in link."""
    if _dev_delivery(settings):
        logger.info("[DEV] Magic link email for %s", email)
        logger.info("[DEV] Magic link: %s", magic_link_url)
        logger.info("[DEV] Expires in %s minutes", expires_in_minutes)
        return

    subject = f"Your {settings.app_name} sign-in link"
    body = f"""
        <p>Click the button below to sign in:</p>
        <p style="margin: 30px 0;">
            <a href="{magic_link_url}"
               style="background-color: #111; color: #fff; padding: 14px 28px; text-decoration: none; border-radius: 6px; display: inline-block; font-weight: bold;">
                Sign in to {settings.app_name}
            </a>
        </p>
        <p><strong>This link expires in {expires_in_minutes} minutes</strong> and can be used once.</p>
    """
    text = (
        f"Sign in to {settings.app_name}: {magic_link_url}\n"
        f"This link expires in {expires_in_minutes} minutes and can be used once."
    )
    await _send(settings, email, subject, _layout(settings, subject, body), text)


async def send_otp_email(
    settings: Settings,
    email: str,
    code: str,
    expires_in_minutes: int,
) -> None:
    """Send a one-time sign-in code."""
    if _dev_delivery(settings):
        logger.info("[DEV] Sign-in code for %s: %s", email, code)
        logger.info("[DEV] Expires in %s minutes", expires_in_minutes)
        return

    subject = f"Your {settings.app_name} code: {code}"
    body = f"""
        <p>Enter this code to sign in:</p>
        <p style="font-size: 32px; letter-spacing: 8px; font-weight: bold; margin: 30px 0;">{code}</p>
        <p><strong>This code expires in {expires_in_minutes} minutes.</strong></p>
    """
    text = f"Your {settings.app_name} sign-in code is {code}. It expires in {expires_in_minutes} minutes."
    await _send(settings, email, subject, _layout(settings, subject, body), text)
