# Overview: Email jobs; first-purchase notifications and the daily purchase report.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Admin, Purchase
from ..services import mail_service, reporting_service
from ..services.purchase_service import is_first_purchase_of_product
from .registry import job
from shopadmin.time_utils import parse_date, today


@job(queue="default")
def first_purchase_notification(purchase_id: int) -> dict:
    """
    Email the product's creator and every other admin about the first
    purchase of a product.

    First-purchase status is checked again here, since the job may run long
    after it was enqueued. A missing purchase is logged and not retried.
    """
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        current_app.logger.error("First purchase notification: purchase %s not found", purchase_id)
        return {"sent": 0}

    if not is_first_purchase_of_product(purchase):
        current_app.logger.info(
            "First purchase notification: purchase %s is no longer the first of product %s",
            purchase_id, purchase.product_id,
        )
        return {"sent": 0}

    product = purchase.product
    customer = purchase.customer
    creator = product.admin

    mail_service.send_first_purchase_notification(
        admin=creator, purchase=purchase, product=product, customer=customer, is_creator=True
    )

    others = db.session.query(Admin).filter(Admin.id != creator.id).order_by(Admin.id.asc()).all()
    for admin in others:
        mail_service.send_first_purchase_notification(
            admin=admin, purchase=purchase, product=product, customer=customer, is_creator=False
        )

    current_app.logger.info(
        "First purchase notification: sent to %s and %s other admins for purchase %s",
        creator.email, len(others), purchase_id,
    )
    return {"sent": 1 + len(others)}


@job(queue="reports")
def daily_purchase_report(report_date: str | None = None) -> dict:
    """Email the purchase report of `report_date` (default: yesterday) to every admin."""
    day = parse_date(report_date) if report_date else today() - timedelta(days=1)

    report = reporting_service.build_daily_email_report(day)
    if report is None:
        current_app.logger.info("Daily purchase report: no purchases on %s", day.isoformat())
        return {"empty": True, "date": day.isoformat(), "sent": 0}

    admins = db.session.query(Admin).order_by(Admin.id.asc()).all()
    if not admins:
        current_app.logger.info("Daily purchase report: no admins found")

    for admin in admins:
        mail_service.send_daily_purchase_report(admin=admin, report=report, report_date=day)

    current_app.logger.info(
        "Daily purchase report: sent to %s admins for %s", len(admins), day.isoformat()
    )
    return {"empty": False, "date": day.isoformat(), "sent": len(admins)}
