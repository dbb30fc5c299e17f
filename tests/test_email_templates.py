"""MJML template rendering (no compilation or sending)"""

from decimal import Decimal

from mathbridge.email_templates import (
    THEME,
    format_vnd,
    payment_receipt_template,
    reschedule_rejected_template,
)


def test_format_vnd_groups_thousands_with_dots():
    assert format_vnd(Decimal("1500000")) == "1.500.000 ₫"
    assert format_vnd(0) == "0 ₫"


def test_receipt_shows_amount_and_reference():
    mjml = payment_receipt_template(
        user_name="Lan",
        amount=Decimal("2000000"),
        order_reference="MB1A2B3C4D",
        purpose="contract #4",
        paid_at="05/01/2024 10:15",
    )

    assert "2.000.000 ₫" in mjml
    assert "MB1A2B3C4D" in mjml
    assert mjml.lstrip().startswith("<mjml>")


def test_every_theme_colour_is_used():
    rendered = payment_receipt_template("Lan", Decimal("1"), "MB1", "x", "now") + reschedule_rejected_template(
        parent_name="Lan",
        child_name="Minh",
        session_date="08/01/2024",
        session_time="16:00 - 17:30",
        reason="no tutor free",
    )

    unused = [name for name, colour in THEME.items() if colour not in rendered]
    assert unused == []
