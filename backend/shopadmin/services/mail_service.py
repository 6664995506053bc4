# Overview: Outgoing admin email; renders mail templates and delivers them over SMTP.

"""
Admin Mail Service

Messages are rendered from Jinja2 templates under templates/mail and sent
with smtplib, either over SSL (SMTP_USE_SSL) or plain SMTP upgraded with
STARTTLS (SMTP_USE_TLS).

With MAIL_SUPPRESS_SEND set, nothing leaves the process: messages are
appended to app.extensions["mail_outbox"] instead.

Delivery failures raise NotificationDeliveryError so the job runner can
retry them.
"""

from __future__ import annotations

import smtplib
from datetime import date
from email.message import EmailMessage

from flask import current_app, render_template

from ..models import Admin, Customer, Product, Purchase


class NotificationDeliveryError(Exception):
    """Raised when an email cannot be handed to the SMTP server."""


def _create_smtp_client() -> smtplib.SMTP:
    config = current_app.config
    host = config.get("SMTP_HOST")
    if not host:
        raise NotificationDeliveryError("SMTP_HOST is not configured")

    port = config.get("SMTP_PORT", 587)
    if config.get("SMTP_USE_SSL"):
        server: smtplib.SMTP = smtplib.SMTP_SSL(host, port, timeout=30)
    else:
        server = smtplib.SMTP(host, port, timeout=30)
        if config.get("SMTP_USE_TLS"):
            server.starttls()
    return server


def outbox() -> list[EmailMessage]:
    return current_app.extensions.setdefault("mail_outbox", [])


def send_email(to_email: str, subject: str, template: str, **context) -> EmailMessage:
    """Render `template` with `context` and deliver it to a single recipient."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = current_app.config.get("MAIL_FROM", "noreply@shopadmin.local")
    msg["To"] = to_email
    msg.set_content(render_template(template, **context))

    if current_app.config.get("MAIL_SUPPRESS_SEND"):
        outbox().append(msg)
        current_app.logger.info("Mail suppressed: %r to %s", subject, to_email)
        return msg

    try:
        server = _create_smtp_client()
        try:
            username = current_app.config.get("SMTP_USERNAME")
            if username:
                server.login(username, current_app.config.get("SMTP_PASSWORD") or "")
            server.send_message(msg)
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError) as exc:
        raise NotificationDeliveryError(f"Failed to send {subject!r} to {to_email}: {exc}") from exc

    current_app.logger.info("Mail sent: %r to %s", subject, to_email)
    return msg


def send_first_purchase_notification(
    *,
    admin: Admin,
    purchase: Purchase,
    product: Product,
    customer: Customer,
    is_creator: bool,
) -> EmailMessage:
    subject = (
        f"First purchase of your product {product.name}"
        if is_creator
        else f"New first purchase of the product: {product.name}"
    )
    return send_email(
        admin.email,
        subject,
        "mail/first_purchase_notification.txt",
        admin=admin,
        purchase=purchase,
        product=product,
        customer=customer,
        is_creator=is_creator,
    )


def send_daily_purchase_report(*, admin: Admin, report: dict, report_date: date) -> EmailMessage:
    return send_email(
        admin.email,
        f"Reporte diario de compras - {report_date.strftime('%d/%m/%Y')}",
        "mail/daily_purchase_report.txt",
        admin=admin,
        report=report,
        report_date=report_date,
    )
