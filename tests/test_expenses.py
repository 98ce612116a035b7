"""
Unit Tests: Manual Expenses

Expenses entered by hand move the project's actual spend by their paid total.
Expenses reconciled from an invoice stay read-only.
"""
from datetime import date
from decimal import Decimal

import pytest

from projectledger.errors import ForbiddenError, NotFoundError, ValidationError
from projectledger.extensions import db
from projectledger.models import AuditLog, Expense, Project
from projectledger.services import expenses as expense_service
from projectledger.services import invoices as invoice_service
from projectledger.services import reconciliation


def _create(ledger, **data):
    payload = {"category": "labor", "amount": "5000", "description": "Site cleaning crew"}
    payload.update(data)
    return expense_service.create_expense(ledger.project, ledger.member, payload)


def _spend(ledger) -> Decimal:
    return db.session.get(Project, ledger.project.id).actual_spend


def _invoice_expense(ledger):
    invoice = invoice_service.create_invoice(
        ledger.project, ledger.member, description="Blocks", category="materials", amount="800"
    )
    invoice = invoice_service.approve_invoice(invoice, ledger.manager)
    _, expense = invoice_service.mark_invoice_paid(invoice, ledger.manager, payment_method="cash")
    return expense


# =============================================================================
# CREATE
# =============================================================================

class TestCreateExpense:

    def test_unpaid_expense_does_not_touch_spend(self, ledger):
        expense = _create(ledger)

        assert expense.invoice_id is None
        assert expense.expense_type == "manual"
        assert expense.status == "pending"
        assert expense.payment_status == "unpaid"
        assert expense.currency == "NGN"
        assert _spend(ledger) == Decimal("0.00")

    def test_paid_expense_adds_total_with_tax(self, ledger):
        expense = _create(ledger, tax_amount="375", payment_status="paid", payment_method="Cash")

        assert expense.total_amount == Decimal("5375.00")
        assert expense.paid_date == date.today()
        assert expense.payment_method == "cash"
        assert _spend(ledger) == Decimal("5375.00")
        assert reconciliation.project_actual_spend(ledger.project.id) == Decimal("5375.00")

    @pytest.mark.parametrize(
        "data",
        [
            {"amount": 0},
            {"category": " "},
            {"tax_amount": "-1"},
            {"payment_status": "partly"},
            {"payment_method": "barter"},
        ],
    )
    def test_invalid_input_rejected(self, ledger, data):
        with pytest.raises(ValidationError):
            _create(ledger, **data)
        assert Expense.query.count() == 0

    def test_approved_expense_records_approver(self, ledger):
        expense = _create(ledger, status="approved")
        assert expense.approved_by == ledger.member.id

    def test_create_writes_audit_entry(self, ledger):
        expense = _create(ledger)
        assert AuditLog.query.filter_by(entity_type="Expense", entity_id=expense.id, action="CREATE").count() == 1


# =============================================================================
# UPDATE / DELETE
# =============================================================================

class TestEditManualExpense:

    def test_paying_an_expense_adds_to_spend(self, ledger):
        expense = _create(ledger)
        expense = expense_service.update_expense(expense, ledger.member, {"payment_status": "paid"})

        assert expense.paid_date == date.today()
        assert _spend(ledger) == Decimal("5000.00")

    def test_amount_change_moves_spend_by_difference(self, ledger):
        expense = _create(ledger, payment_status="paid")
        expense_service.update_expense(expense, ledger.member, {"amount": "3000", "tax_amount": "100"})

        assert _spend(ledger) == Decimal("3100.00")
        assert reconciliation.project_actual_spend(ledger.project.id) == Decimal("3100.00")

    def test_marking_unpaid_removes_spend(self, ledger):
        expense = _create(ledger, payment_status="paid")
        expense_service.update_expense(expense, ledger.member, {"payment_status": "unpaid"})
        assert _spend(ledger) == Decimal("0.00")

    def test_unknown_field_rejected(self, ledger):
        expense = _create(ledger)
        with pytest.raises(ValidationError):
            expense_service.update_expense(expense, ledger.member, {"invoice_id": 1})

    def test_delete_paid_expense_restores_spend(self, ledger):
        kept = _create(ledger, amount="1000", payment_status="paid")
        removed = _create(ledger, amount="2000", payment_status="paid")
        assert _spend(ledger) == Decimal("3000.00")

        expense_service.delete_expense(removed, ledger.owner)

        assert _spend(ledger) == Decimal("1000.00")
        assert [e.id for e in Expense.query.all()] == [kept.id]

    def test_expense_of_other_project_is_not_found(self, ledger):
        other = Project(customer_id=ledger.customer.id, name="Second site", total_budget=Decimal("0"))
        db.session.add(other)
        db.session.commit()
        expense = _create(ledger)

        with pytest.raises(NotFoundError):
            expense_service.get_expense(other, expense.id)


class TestInvoiceExpensesAreReadOnly:

    def test_update_refused(self, ledger):
        expense = _invoice_expense(ledger)
        with pytest.raises(ForbiddenError):
            expense_service.update_expense(expense, ledger.owner, {"amount": "1"})
        assert db.session.get(Expense, expense.id).amount == Decimal("800.00")

    def test_delete_refused(self, ledger):
        expense = _invoice_expense(ledger)
        with pytest.raises(ForbiddenError):
            expense_service.delete_expense(expense, ledger.owner)
        assert Expense.query.count() == 1
        assert _spend(ledger) == Decimal("800.00")

    def test_listed_with_manual_expenses(self, ledger):
        _invoice_expense(ledger)
        _create(ledger, category="Materials")

        found = expense_service.list_expenses(ledger.project.id, category="MATERIALS").all()
        assert len(found) == 2
