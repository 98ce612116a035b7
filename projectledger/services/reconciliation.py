"""
projectledger/services/reconciliation.py

Expense reconciliation: a paid invoice becomes exactly one project expense,
and the project's actual spend grows by the invoice amount.

reconcile() never commits. It is called by invoices.mark_invoice_paid()
inside the same unit of work as the invoice status update, so either both
writes land or neither does.

Manual expenses (services/expenses.py) move actual spend through
adjust_actual_spend() as well.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy import func

from ..errors import InvalidStateError
from ..extensions import db
from ..models import BudgetLineItem, Expense, Invoice, Project, User, _money, _to_decimal, utcnow

logger = logging.getLogger(__name__)


def reconcile(
    invoice: Invoice,
    actor: User,
    *,
    paid_date: date,
    payment_method: str,
    payment_reference: str | None = None,
    notes: str | None = None,
) -> Expense:
    """
    Record the expense for a paid invoice and bump Project.actual_spend.

    Raises InvalidStateError if an expense already exists for the invoice.
    The unique constraint on expenses.invoice_id backs this check up when two
    requests race past it.
    """
    existing = Expense.query.filter_by(invoice_id=invoice.id).first()
    if existing is not None:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} has already been reconciled",
            {"expenseId": existing.id},
        )

    amount = _to_decimal(invoice.amount)

    expense = Expense(
        project_id=invoice.project_id,
        invoice_id=invoice.id,
        vendor_id=invoice.vendor_id,
        amount=amount,
        tax_amount=Decimal("0.00"),
        total_amount=amount,
        currency=invoice.currency,
        expense_type="invoice",
        category=invoice.category,
        invoice_number=invoice.invoice_number,
        description=invoice.description or f"Payment for invoice {invoice.invoice_number}",
        invoice_date=invoice.created_at,
        due_date=invoice.due_date,
        paid_date=paid_date,
        status="approved",
        payment_status="paid",
        payment_method=payment_method,
        payment_reference=payment_reference,
        approved_by=actor.id,
        approved_at=utcnow(),
        notes=notes or f"Auto-created from invoice {invoice.invoice_number}",
    )
    db.session.add(expense)

    adjust_actual_spend(invoice.project_id, amount)
    db.session.flush()

    logger.info(
        "Reconciled invoice %s into expense %s (%s %s)",
        invoice.invoice_number,
        expense.id,
        amount,
        invoice.currency,
    )
    return expense


def adjust_actual_spend(project_id: int, delta: Decimal) -> None:
    """
    Add `delta` (may be negative) to Project.actual_spend.

    The increment happens in SQL, so concurrent payments on the same project
    cannot lose updates. Loaded Project instances are not refreshed.
    """
    if not delta:
        return
    db.session.execute(
        sa.update(Project)
        .where(Project.id == project_id)
        .values(actual_spend=Project.actual_spend + delta)
        .execution_options(synchronize_session=False)
    )


def project_actual_spend(project_id: int) -> Decimal:
    """Actual spend recomputed from paid expenses."""
    total = (
        db.session.query(func.coalesce(func.sum(Expense.total_amount), 0))
        .filter(Expense.project_id == project_id, Expense.payment_status == "paid")
        .scalar()
    )
    return _money(_to_decimal(total))


def spend_by_category(project_id: int) -> dict[str, Decimal]:
    """Paid spend per lower-cased category."""
    category = func.lower(Expense.category)
    rows = (
        db.session.query(category, func.sum(Expense.total_amount))
        .filter(Expense.project_id == project_id, Expense.payment_status == "paid")
        .group_by(category)
        .all()
    )
    return {name: _money(_to_decimal(total)) for name, total in rows}


def budget_with_actuals(project: Project) -> list[dict]:
    """Budget lines with actual amount, variance and variance percent."""
    actuals = spend_by_category(project.id)
    lines = []
    for item in BudgetLineItem.query.filter_by(project_id=project.id).order_by(BudgetLineItem.category.asc()):
        planned = _to_decimal(item.planned_amount)
        actual = actuals.get(item.category.lower(), Decimal("0.00"))
        variance = _money(actual - planned)
        variance_percent = float(variance / planned * 100) if planned > 0 else 0.0
        lines.append(
            {
                "id": item.id,
                "projectId": item.project_id,
                "category": item.category,
                "description": item.description,
                "plannedAmount": float(planned),
                "actualAmount": float(actual),
                "variance": float(variance),
                "variancePercent": round(variance_percent, 2),
                "notes": item.notes,
            }
        )
    return lines
