"""
projectledger/services/invoices.py

Invoice ledger: invoice records and their status workflow.

    pending --approve--> approved --mark as paid--> paid
    pending --reject---> rejected

`paid` and `rejected` are terminal. A paid invoice can be neither edited nor
deleted. Marking as paid reconciles the invoice into a project expense in the
same transaction (see services/reconciliation.py).

Every transition is a conditional UPDATE on the expected source status, so two
concurrent approve / pay requests cannot both succeed.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..audit import log_action, serialize_model
from ..errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Expense,
    Invoice,
    InvoiceStatus,
    PaymentMethod,
    Project,
    PurchaseOrder,
    User,
    Vendor,
    coerce_enum,
    utcnow,
)
from ..utils import (
    LIKE_ESCAPE,
    clean_str,
    contains_pattern,
    next_document_number,
    parse_date,
    require_positive_amount,
)
from . import attachments as attachment_store
from . import conditional_transition, unit_of_work
from .reconciliation import reconcile

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
NUMBER_ATTEMPTS = 3

EDITABLE_FIELDS = ("description", "category", "amount", "currency", "due_date", "notes", "vendor_id")


class _NumberTaken(Exception):
    """The candidate invoice number was inserted concurrently."""


# ---------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------
def get_invoice(project: Project, invoice_id: int) -> Invoice:
    invoice = Invoice.query.filter_by(id=invoice_id, project_id=project.id).first()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def _tenant_vendor(project: Project, vendor_id) -> Vendor | None:
    if vendor_id in (None, ""):
        return None
    vendor = Vendor.query.filter_by(id=vendor_id, customer_id=project.customer_id).first()
    if vendor is None:
        raise NotFoundError("Vendor not found")
    return vendor


def _project_purchase_order(project: Project, purchase_order_id) -> PurchaseOrder | None:
    if purchase_order_id in (None, ""):
        return None
    po = PurchaseOrder.query.filter_by(id=purchase_order_id, project_id=project.id).first()
    if po is None:
        raise NotFoundError("Purchase order not found")
    return po


def next_invoice_number(project_id: int, year: int | None = None) -> str:
    """
    INV-<year>-NNN for a project: highest existing suffix for that year + 1.

    Falls back to NNN=001 if the lookup itself fails.
    """
    year = year or date.today().year
    try:
        existing = [
            number
            for (number,) in db.session.query(Invoice.invoice_number)
            .filter(
                Invoice.project_id == project_id,
                Invoice.invoice_number.like(f"{INVOICE_PREFIX}-{year}-%"),
            )
            .all()
        ]
    except SQLAlchemyError:
        logger.exception("Invoice number lookup failed for project %s", project_id)
        existing = []
    return next_document_number(INVOICE_PREFIX, year, existing)


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------
def list_invoices(project_id: int, *, status=None, category: str | None = None, search: str | None = None):
    """
    Lazy, filterable query of a project's invoices (newest first).

    search: case-insensitive match on invoice number, description or vendor name.
    """
    q = Invoice.query.outerjoin(Vendor, Vendor.id == Invoice.vendor_id).filter(Invoice.project_id == project_id)

    if status not in (None, "", "all"):
        wanted = coerce_enum(InvoiceStatus, status)
        if wanted is None:
            raise ValidationError("Unknown invoice status", {"status": status})
        q = q.filter(Invoice.status == wanted)

    category = clean_str(category)
    if category:
        q = q.filter(func.lower(Invoice.category) == category.lower())

    search = clean_str(search)
    if search:
        pattern = contains_pattern(search)
        q = q.filter(
            or_(
                Invoice.invoice_number.ilike(pattern, escape=LIKE_ESCAPE),
                Invoice.description.ilike(pattern, escape=LIKE_ESCAPE),
                Vendor.name.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )

    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc())


def list_customer_invoices(customer_id: int):
    """All invoices across a tenant's projects (newest first)."""
    return (
        Invoice.query.join(Project, Project.id == Invoice.project_id)
        .filter(Project.customer_id == customer_id)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
    )


def invoice_totals(invoices: Iterable[Invoice]) -> dict:
    """Aggregates shown above invoice tables."""
    totals = {"total": 0.0, "pending": 0.0, "approved": 0.0, "paid": 0.0, "rejected": 0.0, "count": 0}
    for invoice in invoices:
        amount = float(invoice.amount or 0)
        totals["count"] += 1
        totals["total"] += amount
        totals[invoice.status.value] += amount
    return totals


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------
def create_invoice(
    project: Project,
    actor: User,
    *,
    description,
    category,
    amount,
    currency=None,
    vendor_id=None,
    purchase_order_id=None,
    due_date=None,
    notes=None,
    attachment_paths: Iterable[str] | None = None,
) -> Invoice:
    description = clean_str(description)
    category = clean_str(category)
    if not description:
        raise ValidationError("description is required", {"field": "description"})
    if not category:
        raise ValidationError("category is required", {"field": "category"})
    amount = require_positive_amount(amount, "amount")

    vendor = _tenant_vendor(project, vendor_id)
    purchase_order = _project_purchase_order(project, purchase_order_id)
    if vendor is None and purchase_order is not None:
        vendor = purchase_order.vendor

    due = parse_date(due_date, "dueDate")
    currency = (clean_str(currency) or project.currency or current_app.config["DEFAULT_CURRENCY"]).upper()
    vendor_pk = vendor.id if vendor else None
    purchase_order_pk = purchase_order.id if purchase_order else None
    project_pk = project.id
    customer_pk = project.customer_id

    # A number collision rolls back the whole unit and the create starts over.
    for attempt in range(1, NUMBER_ATTEMPTS + 1):
        number = next_invoice_number(project_pk)
        try:
            with unit_of_work():
                invoice = Invoice(
                    project_id=project_pk,
                    vendor_id=vendor_pk,
                    purchase_order_id=purchase_order_pk,
                    invoice_number=number,
                    description=description,
                    category=category,
                    amount=amount,
                    currency=currency,
                    status=InvoiceStatus.PENDING,
                    due_date=due,
                    notes=clean_str(notes),
                )
                db.session.add(invoice)
                try:
                    db.session.flush()
                except IntegrityError as exc:
                    raise _NumberTaken(number) from exc

                if attachment_paths:
                    attachment_store.bind_paths(invoice, customer_pk, attachment_paths)

                db.session.flush()
                log_action(invoice, "CREATE", actor=actor, after=serialize_model(invoice))
        except _NumberTaken:
            logger.warning("Invoice number %s taken (attempt %s/%s)", number, attempt, NUMBER_ATTEMPTS)
            continue
        break
    else:
        raise InvalidStateError("Could not allocate a unique invoice number, please retry")

    logger.info("Invoice %s created in project %s by user %s", invoice.invoice_number, project_pk, actor.id)
    return invoice


def update_invoice(invoice: Invoice, actor: User, fields: dict) -> Invoice:
    """
    Edit an invoice that has not been paid.

    `fields` uses service names (description, category, amount, currency,
    due_date, notes, vendor_id); keys that are absent are left unchanged.
    Everything is validated before the record is touched.
    """
    if invoice.status == InvoiceStatus.PAID:
        raise ForbiddenError("Paid invoices cannot be modified")

    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unsupported fields", {"fields": sorted(unknown)})

    changes = {}
    if "description" in fields:
        changes["description"] = clean_str(fields["description"])
        if not changes["description"]:
            raise ValidationError("description is required", {"field": "description"})
    if "category" in fields:
        changes["category"] = clean_str(fields["category"])
        if not changes["category"]:
            raise ValidationError("category is required", {"field": "category"})
    if "amount" in fields:
        changes["amount"] = require_positive_amount(fields["amount"], "amount")
    if "currency" in fields and clean_str(fields["currency"]):
        changes["currency"] = clean_str(fields["currency"]).upper()
    if "due_date" in fields:
        changes["due_date"] = parse_date(fields["due_date"], "dueDate")
    if "notes" in fields:
        changes["notes"] = clean_str(fields["notes"])
    if "vendor_id" in fields:
        vendor = _tenant_vendor(invoice.project, fields["vendor_id"])
        changes["vendor_id"] = vendor.id if vendor else None

    before = serialize_model(invoice)

    with unit_of_work():
        for name, value in changes.items():
            setattr(invoice, name, value)
        db.session.flush()
        log_action(invoice, "UPDATE", actor=actor, before=before, after=serialize_model(invoice))

    return invoice


def delete_invoice(invoice: Invoice, actor: User) -> None:
    """Delete an unpaid invoice together with its attachments and stored files."""
    if invoice.status == InvoiceStatus.PAID:
        raise ForbiddenError(
            "Paid invoices cannot be deleted",
            {"invoiceNumber": invoice.invoice_number},
        )

    paths = invoice.attachment_paths
    number = invoice.invoice_number

    with unit_of_work():
        log_action(invoice, "DELETE", actor=actor, before=serialize_model(invoice))
        db.session.delete(invoice)

    attachment_store.remove_files(paths)
    logger.info("Invoice %s deleted by user %s", number, actor.id)


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------
def _require_status(invoice: Invoice, expected: InvoiceStatus, action: str) -> None:
    if invoice.status != expected:
        raise InvalidStateError(
            f"Cannot {action} an invoice that is {invoice.status.value}",
            {"status": invoice.status.value, "requiredStatus": expected.value},
        )


def approve_invoice(invoice: Invoice, actor: User) -> Invoice:
    _require_status(invoice, InvoiceStatus.PENDING, "approve")
    before = serialize_model(invoice)

    with unit_of_work():
        conditional_transition(
            Invoice,
            invoice,
            InvoiceStatus.PENDING,
            {"status": InvoiceStatus.APPROVED, "approved_by": actor.id, "approved_at": utcnow()},
            "Invoice",
        )
        log_action(invoice, "APPROVE", actor=actor, before=before, after=serialize_model(invoice))

    logger.info("Invoice %s approved by user %s", invoice.invoice_number, actor.id)
    return invoice


def reject_invoice(invoice: Invoice, actor: User, reason: str | None = None) -> Invoice:
    _require_status(invoice, InvoiceStatus.PENDING, "reject")
    before = serialize_model(invoice)

    reason = clean_str(reason)
    notes = invoice.notes
    if reason:
        notes = f"{notes}\nRejected: {reason}" if notes else f"Rejected: {reason}"

    with unit_of_work():
        conditional_transition(
            Invoice,
            invoice,
            InvoiceStatus.PENDING,
            {"status": InvoiceStatus.REJECTED, "notes": notes},
            "Invoice",
        )
        log_action(invoice, "REJECT", actor=actor, before=before, after=serialize_model(invoice))

    logger.info("Invoice %s rejected by user %s", invoice.invoice_number, actor.id)
    return invoice


def mark_invoice_paid(
    invoice: Invoice,
    actor: User,
    *,
    payment_method,
    paid_date=None,
    payment_reference=None,
    notes=None,
) -> tuple[Invoice, Expense]:
    """
    approved -> paid, reconciled into exactly one expense.

    The status update, the expense row and the project spend increment are one
    transaction: if reconciliation fails the invoice stays approved.
    """
    _require_status(invoice, InvoiceStatus.APPROVED, "mark as paid")

    method = coerce_enum(PaymentMethod, payment_method)
    if method is None:
        raise ValidationError(
            "A valid paymentMethod is required",
            {"field": "paymentMethod", "allowed": [m.value for m in PaymentMethod]},
        )
    paid_on = parse_date(paid_date, "paidDate") or date.today()
    reference = clean_str(payment_reference)
    before = serialize_model(invoice)

    with unit_of_work():
        conditional_transition(
            Invoice,
            invoice,
            InvoiceStatus.APPROVED,
            {
                "status": InvoiceStatus.PAID,
                "paid_date": paid_on,
                "payment_method": method.value,
                "payment_reference": reference,
            },
            "Invoice",
        )
        expense = reconcile(
            invoice,
            actor,
            paid_date=paid_on,
            payment_method=method.value,
            payment_reference=reference,
            notes=clean_str(notes),
        )
        log_action(invoice, "PAY", actor=actor, before=before, after=serialize_model(invoice))
        log_action(expense, "CREATE", actor=actor, after=serialize_model(expense))

    logger.info(
        "Invoice %s marked as paid (%s) by user %s, expense %s",
        invoice.invoice_number,
        method.value,
        actor.id,
        expense.id,
    )
    return invoice, expense
