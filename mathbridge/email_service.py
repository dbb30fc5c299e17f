"""
Email Service using Resend
Compiles MJML templates to HTML and sends transactional mail for payment
and scheduling events.
"""

import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    contract_approved_template,
    payment_receipt_template,
    reschedule_approved_template,
    reschedule_rejected_template,
    reschedule_request_created_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailDeliveryError(Exception):
    """Raised when an email cannot be compiled or sent"""


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns an object with 'html' and 'errors'
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        if getattr(result, "errors", None):
            logger.warning(f"MJML compilation warnings: {result.errors}")
        return getattr(result, "html", str(result))
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise EmailDeliveryError(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailDeliveryError("Email service not configured")

    try:
        logger.info(f"📧 Sending email via Resend to: {to}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {str(e)}") from e


def _fmt_date(value: Union[date, datetime]) -> str:
    return value.strftime("%d/%m/%Y")


def _fmt_time(start: Union[time, datetime], end: Union[time, datetime]) -> str:
    return f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}"


# ============================================
# Pre-built emails for payment and scheduling events
# ============================================


async def send_payment_receipt_email(
    to: str,
    user_name: str,
    amount: Decimal,
    order_reference: str,
    purpose: str,
    paid_at: Optional[datetime] = None,
) -> dict:
    mjml = payment_receipt_template(
        user_name=user_name or "there",
        amount=amount,
        order_reference=order_reference,
        purpose=purpose,
        paid_at=(paid_at or datetime.utcnow()).strftime("%d/%m/%Y %H:%M"),
    )
    return await send_email(to=to, subject=f"Payment received - {order_reference}", mjml_content=mjml)


async def send_contract_approved_email(
    to: str,
    parent_name: str,
    child_name: str,
    package_name: str,
    first_session: datetime,
    session_count: int,
) -> dict:
    mjml = contract_approved_template(
        parent_name=parent_name or "there",
        child_name=child_name or "your child",
        package_name=package_name,
        first_session=first_session.strftime("%d/%m/%Y %H:%M"),
        session_count=session_count,
    )
    return await send_email(to=to, subject="Your MathBridge contract is active", mjml_content=mjml)


async def send_reschedule_request_created_email(
    to: str,
    parent_name: str,
    child_name: str,
    old_start: datetime,
    old_end: datetime,
    new_date: date,
    new_start: time,
    new_end: time,
    reason: Optional[str],
) -> dict:
    mjml = reschedule_request_created_template(
        parent_name=parent_name or "there",
        child_name=child_name or "your child",
        old_date=_fmt_date(old_start),
        old_time=_fmt_time(old_start, old_end),
        new_date=_fmt_date(new_date),
        new_time=_fmt_time(new_start, new_end),
        reason=reason or "-",
    )
    return await send_email(to=to, subject="Reschedule request submitted", mjml_content=mjml)


async def send_reschedule_approved_email(
    to: str,
    parent_name: str,
    child_name: str,
    new_start: datetime,
    new_end: datetime,
    tutor_name: str,
) -> dict:
    mjml = reschedule_approved_template(
        parent_name=parent_name or "there",
        child_name=child_name or "your child",
        new_date=_fmt_date(new_start),
        new_time=_fmt_time(new_start, new_end),
        tutor_name=tutor_name or "your tutor",
    )
    return await send_email(to=to, subject="Reschedule request approved", mjml_content=mjml)


async def send_reschedule_rejected_email(
    to: str,
    parent_name: str,
    child_name: str,
    session_start: datetime,
    session_end: datetime,
    reason: Optional[str],
) -> dict:
    mjml = reschedule_rejected_template(
        parent_name=parent_name or "there",
        child_name=child_name or "your child",
        session_date=_fmt_date(session_start),
        session_time=_fmt_time(session_start, session_end),
        reason=reason or "-",
    )
    return await send_email(to=to, subject="Reschedule request rejected", mjml_content=mjml)
