"""
MJML Email Templates
All email templates using MJML for responsive, cross-client compatibility
"""

from decimal import Decimal
from typing import Optional, Union

from .config import FRONTEND_URL

THEME = {
    "primary": "#2563eb",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "success": "#16a34a",
}

LOGO_URL = f"{FRONTEND_URL}/logo.png"


def format_vnd(amount: Union[Decimal, float, int]) -> str:
    """Format an amount as Vietnamese dong, e.g. 1.500.000 ₫"""
    return f"{int(amount):,}".replace(",", ".") + " ₫"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 20px">
          <mj-column>
            <mj-image src="{LOGO_URL}" alt="MathBridge" width="140px" href="{FRONTEND_URL}" padding="0" />
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              © MathBridge. You're receiving this because you have a MathBridge account.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def payment_receipt_template(
    user_name: str,
    amount: Decimal,
    order_reference: str,
    purpose: str,
    paid_at: str,
) -> str:
    """Receipt sent after a gateway payment is confirmed"""
    content = f"""
    <mj-text>
      Hi {user_name},
    </mj-text>

    <mj-text>
      We have received your payment for <strong>{purpose}</strong>.
    </mj-text>

    <mj-text align="center" font-size="36px" font-weight="700" color="{THEME['success']}" padding="20px 0">
      {format_vnd(amount)}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}" padding="20px 0">
      Reference: {order_reference}<br/>
      Paid at: {paid_at}
    </mj-text>

    <mj-text font-size="13px" color="{THEME['text_muted']}">
      This is an automated receipt. Please do not reply to this message.
    </mj-text>
    """

    return get_base_template(
        title="Payment Received",
        preview_text=f"✅ Payment received - {order_reference}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/wallet",
        cta_label="View Wallet",
    )


def contract_approved_template(
    parent_name: str,
    child_name: str,
    package_name: str,
    first_session: str,
    session_count: int,
) -> str:
    """Contract activated by staff"""
    content = f"""
    <mj-text>
      Hi {parent_name},
    </mj-text>

    <mj-text>
      The <strong>{package_name}</strong> contract for {child_name} has been approved.
      {session_count} sessions are now on the calendar, starting {first_session}.
    </mj-text>
    """

    return get_base_template(
        title="Contract Approved",
        preview_text=f"Sessions for {child_name} start {first_session}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/contracts",
        cta_label="View Schedule",
    )


def reschedule_request_created_template(
    parent_name: str,
    child_name: str,
    old_date: str,
    old_time: str,
    new_date: str,
    new_time: str,
    reason: str,
) -> str:
    content = f"""
    <mj-text>
      Hi {parent_name},
    </mj-text>

    <mj-text>
      Your request to move {child_name}'s session has been submitted and is waiting for staff approval.
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}" padding="20px 0">
      Current: {old_date} {old_time}<br/>
      Requested: {new_date} {new_time}<br/>
      Reason: {reason}
    </mj-text>
    """

    return get_base_template(
        title="Reschedule Request Submitted",
        preview_text=f"Reschedule request for {new_date}",
        content_sections=content,
    )


def reschedule_approved_template(
    parent_name: str,
    child_name: str,
    new_date: str,
    new_time: str,
    tutor_name: str,
) -> str:
    content = f"""
    <mj-text>
      Hi {parent_name},
    </mj-text>

    <mj-text>
      {child_name}'s session has been moved to <strong>{new_date} {new_time}</strong> with {tutor_name}.
    </mj-text>
    """

    return get_base_template(
        title="Reschedule Approved",
        preview_text=f"New session time: {new_date} {new_time}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/sessions",
        cta_label="View Sessions",
    )


def reschedule_rejected_template(
    parent_name: str,
    child_name: str,
    session_date: str,
    session_time: str,
    reason: str,
) -> str:
    content = f"""
    <mj-text>
      Hi {parent_name},
    </mj-text>

    <mj-text>
      Your reschedule request for {child_name}'s session was not approved.
      The original session on <strong>{session_date} {session_time}</strong> remains unchanged.
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Reason: {reason}
    </mj-text>
    """

    return get_base_template(
        title="Reschedule Request Rejected",
        preview_text="Your original session remains unchanged",
        content_sections=content,
    )
