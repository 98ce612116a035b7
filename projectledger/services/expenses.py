"""
projectledger/services/expenses.py

Project expenses entered by hand (petty cash, site purchases, fees).

Expenses reconciled from an invoice are owned by the invoice ledger: they are
listed here but can be neither edited nor deleted. Only expenses with
payment status "paid" count towards Project.actual_spend, so every create,
update and delete moves the project's spend by the change in paid total.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..audit import log_action, serialize_model
from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Expense, PaymentMethod, Project, User, Vendor, _money, _to_decimal, coerce_enum, utcnow
from ..utils import clean_str, parse_date, parse_decimal, require_positive_amount
from . import unit_of_work
from .reconciliation import adjust_actual_spend

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("unpaid", "paid")
EXPENSE_STATUSES = ("pending", "approved", "rejected")

TEXT_FIELDS = ("description", "invoice_number", "payment_reference", "notes")
DATE_FIELDS = {"invoice_date": "invoiceDate", "due_date": "dueDate", "paid_date": "paidDate"}
EDITABLE_FIELDS = (
    "vendor_id",
    "amount",
    "tax_amount",
    "currency",
    "expense_type",
    "category",
    "status",
    "payment_status",
    "payment_method",
    *TEXT_FIELDS,
    *DATE_FIELDS,
)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def get_expense(project: Project, expense_id: int) -> Expense:
    expense = Expense.query.filter_by(id=expense_id, project_id=project.id).first()
    if expense is None:
        raise NotFoundError("Expense not found")
    return expense


def paid_total(expense: Expense) -> Decimal:
    """What the expense contributes to the project's actual spend."""
    if expense.payment_status != "paid":
        return Decimal("0.00")
    return _money(_to_decimal(expense.total_amount))


def _require_manual(expense: Expense, action: str) -> None:
    if expense.invoice_id is not None:
        raise ForbiddenError(
            f"Expenses created from an invoice cannot be {action}",
            {"invoiceId": expense.invoice_id},
        )


def _tax_amount(value) -> Decimal:
    if value in (None, ""):
        return Decimal("0.00")
    tax = parse_decimal(value)
    if tax is None or not tax.is_finite() or tax < 0:
        raise ValidationError("taxAmount must be zero or more", {"field": "taxAmount"})
    return _money(tax)


def _choice(value, allowed: tuple[str, ...], field: str) -> str:
    choice = (clean_str(value) or "").lower()
    if choice not in allowed:
        raise ValidationError(f"Invalid {field}", {"field": field, "allowed": list(allowed)})
    return choice


def _payment_method(value) -> str | None:
    if not clean_str(value):
        return None
    method = coerce_enum(PaymentMethod, value)
    if method is None:
        raise ValidationError(
            "Invalid paymentMethod",
            {"field": "paymentMethod", "allowed": [m.value for m in PaymentMethod]},
        )
    return method.value


def _vendor_id(project: Project, value) -> int | None:
    if value in (None, ""):
        return None
    vendor = Vendor.query.filter_by(id=value, customer_id=project.customer_id).first()
    if vendor is None:
        raise NotFoundError("Vendor not found")
    return vendor.id


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------
def list_expenses(project_id: int, *, category=None):
    q = Expense.query.filter(Expense.project_id == project_id)
    category = clean_str(category)
    if category:
        q = q.filter(func.lower(Expense.category) == category.lower())
    return q.order_by(Expense.paid_date.desc(), Expense.id.desc())


# ---------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------
def create_expense(project: Project, actor: User, data: dict) -> Expense:
    """
    Record a manual expense.

    Defaults: status "pending", payment status "unpaid", currency of the
    project. A paid expense without paidDate is dated today.
    """
    category = clean_str(data.get("category"))
    if not category:
        raise ValidationError("category is required", {"field": "category"})
    amount = require_positive_amount(data.get("amount"), "amount")
    tax = _tax_amount(data.get("tax_amount"))

    status = _choice(data.get("status") or "pending", EXPENSE_STATUSES, "status")
    payment_status = _choice(data.get("payment_status") or "unpaid", PAYMENT_STATUSES, "paymentStatus")
    paid_date = parse_date(data.get("paid_date"), "paidDate")
    if payment_status == "paid" and paid_date is None:
        paid_date = date.today()

    expense = Expense(
        project_id=project.id,
        invoice_id=None,
        vendor_id=_vendor_id(project, data.get("vendor_id")),
        amount=amount,
        tax_amount=tax,
        total_amount=_money(amount + tax),
        currency=(clean_str(data.get("currency")) or project.currency or current_app.config["DEFAULT_CURRENCY"]).upper(),
        expense_type=clean_str(data.get("expense_type")) or "manual",
        category=category,
        invoice_number=clean_str(data.get("invoice_number")),
        description=clean_str(data.get("description")),
        invoice_date=parse_date(data.get("invoice_date"), "invoiceDate"),
        due_date=parse_date(data.get("due_date"), "dueDate"),
        paid_date=paid_date,
        status=status,
        payment_status=payment_status,
        payment_method=_payment_method(data.get("payment_method")),
        payment_reference=clean_str(data.get("payment_reference")),
        notes=clean_str(data.get("notes")),
    )
    if status == "approved":
        expense.approved_by = actor.id
        expense.approved_at = utcnow()

    with unit_of_work():
        db.session.add(expense)
        adjust_actual_spend(project.id, paid_total(expense))
        db.session.flush()
        log_action(expense, "CREATE", actor=actor, after=serialize_model(expense))

    logger.info(
        "Manual expense %s (%s %s) added to project %s", expense.id, expense.total_amount, expense.currency, project.id
    )
    return expense


def update_expense(expense: Expense, actor: User, data: dict) -> Expense:
    """Partial update of a manual expense; absent keys are left unchanged."""
    _require_manual(expense, "modified")

    unknown = set(data) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unsupported fields", {"fields": sorted(unknown)})

    changes = {}
    if "category" in data:
        changes["category"] = clean_str(data["category"])
        if not changes["category"]:
            raise ValidationError("category is required", {"field": "category"})
    if "amount" in data:
        changes["amount"] = require_positive_amount(data["amount"], "amount")
    if "tax_amount" in data:
        changes["tax_amount"] = _tax_amount(data["tax_amount"])
    if "currency" in data and clean_str(data["currency"]):
        changes["currency"] = clean_str(data["currency"]).upper()
    if "expense_type" in data and clean_str(data["expense_type"]):
        changes["expense_type"] = clean_str(data["expense_type"])
    if "status" in data:
        changes["status"] = _choice(data["status"], EXPENSE_STATUSES, "status")
    if "payment_status" in data:
        changes["payment_status"] = _choice(data["payment_status"], PAYMENT_STATUSES, "paymentStatus")
    if "payment_method" in data:
        changes["payment_method"] = _payment_method(data["payment_method"])
    if "vendor_id" in data:
        changes["vendor_id"] = _vendor_id(expense.project, data["vendor_id"])
    for name in TEXT_FIELDS:
        if name in data:
            changes[name] = clean_str(data[name])
    for name, label in DATE_FIELDS.items():
        if name in data:
            changes[name] = parse_date(data[name], label)

    before = serialize_model(expense)
    spend_before = paid_total(expense)

    with unit_of_work():
        for name, value in changes.items():
            setattr(expense, name, value)
        expense.total_amount = _money(_to_decimal(expense.amount) + _to_decimal(expense.tax_amount))
        if expense.payment_status == "paid" and expense.paid_date is None:
            expense.paid_date = date.today()
        if changes.get("status") == "approved" and before["status"] != "approved":
            expense.approved_by = actor.id
            expense.approved_at = utcnow()

        adjust_actual_spend(expense.project_id, paid_total(expense) - spend_before)
        db.session.flush()
        log_action(expense, "UPDATE", actor=actor, before=before, after=serialize_model(expense))

    return expense


def delete_expense(expense: Expense, actor: User) -> None:
    _require_manual(expense, "deleted")
    expense_id = expense.id
    project_id = expense.project_id

    with unit_of_work():
        log_action(expense, "DELETE", actor=actor, before=serialize_model(expense))
        adjust_actual_spend(project_id, -paid_total(expense))
        db.session.delete(expense)

    logger.info("Manual expense %s deleted from project %s by user %s", expense_id, project_id, actor.id)
