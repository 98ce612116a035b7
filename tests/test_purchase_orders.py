"""
Unit Tests: Purchase Order Ledger
"""
from decimal import Decimal

import pytest

from projectledger.errors import ForbiddenError, InvalidStateError, ValidationError
from projectledger.extensions import db
from projectledger.models import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from projectledger.services import invoices as invoice_service
from projectledger.services import purchase_orders as po_service


ITEMS = [
    {"description": "Cement bags", "quantity": 100, "unitPrice": "4500", "unit": "bag"},
    {"description": "Rebar 12mm", "quantity": "20", "unit_price": 12000},
]


def _create(ledger, **overrides):
    fields = {"description": "Foundation materials", "category": "materials", "total_amount": "500000"}
    fields.update(overrides)
    return po_service.create_purchase_order(ledger.project, ledger.member, **fields)


class TestCreatePurchaseOrder:

    def test_defaults_to_pending_with_number(self, ledger):
        po = _create(ledger)
        assert po.status == PurchaseOrderStatus.PENDING
        assert po.po_number.startswith("PO-")
        assert po.po_number.endswith("-001")
        assert po.requested_by == ledger.member.id

    def test_total_derived_from_items(self, ledger):
        po = _create(ledger, total_amount=None, items=ITEMS)
        assert len(po.items) == 2
        assert po.total_amount == Decimal("690000.00")

    def test_total_required_without_items(self, ledger):
        with pytest.raises(ValidationError):
            _create(ledger, total_amount=None)

    def test_draft_allowed(self, ledger):
        assert _create(ledger, status="draft").status == PurchaseOrderStatus.DRAFT

    def test_cannot_start_approved(self, ledger):
        with pytest.raises(ValidationError):
            _create(ledger, status="approved")

    def test_invalid_item_rejected(self, ledger):
        with pytest.raises(ValidationError):
            _create(ledger, items=[{"description": "Sand", "quantity": 0, "unitPrice": 10}])
        assert PurchaseOrder.query.count() == 0

    def test_numbers_increment(self, ledger):
        first = _create(ledger)
        second = _create(ledger)
        assert int(second.po_number[-3:]) == int(first.po_number[-3:]) + 1


class TestPurchaseOrderWorkflow:

    def test_approve_pending(self, ledger):
        po = po_service.approve_purchase_order(_create(ledger), ledger.manager)
        assert po.status == PurchaseOrderStatus.APPROVED
        assert po.approved_by == ledger.manager.id

    def test_reject_appends_reason(self, ledger):
        po = po_service.reject_purchase_order(_create(ledger), ledger.manager, reason="over budget")
        assert po.status == PurchaseOrderStatus.REJECTED
        assert "Rejection reason: over budget" in po.notes

    def test_draft_cannot_be_approved(self, ledger):
        po = _create(ledger, status="draft")
        with pytest.raises(InvalidStateError):
            po_service.approve_purchase_order(po, ledger.manager)

    def test_submit_then_approve_then_close(self, ledger):
        po = _create(ledger, status="draft")
        po = po_service.submit_purchase_order(po, ledger.member)
        assert po.status == PurchaseOrderStatus.PENDING
        po = po_service.approve_purchase_order(po, ledger.manager)
        po = po_service.close_purchase_order(po, ledger.manager)
        assert po.status == PurchaseOrderStatus.CLOSED

    def test_rejected_cannot_be_approved(self, ledger):
        po = po_service.reject_purchase_order(_create(ledger), ledger.manager)
        with pytest.raises(InvalidStateError):
            po_service.approve_purchase_order(po, ledger.manager)

    def test_pending_cannot_be_closed(self, ledger):
        with pytest.raises(InvalidStateError):
            po_service.close_purchase_order(_create(ledger), ledger.manager)


class TestPurchaseOrderEdits:

    def test_items_replaced_wholesale(self, ledger):
        po = _create(ledger, total_amount=None, items=ITEMS)
        po = po_service.update_purchase_order(
            po, ledger.member, {"items": [{"description": "Sharp sand", "quantity": 10, "unitPrice": 3000}]}
        )
        assert [item.description for item in po.items] == ["Sharp sand"]
        assert po.total_amount == Decimal("30000.00")
        assert PurchaseOrderItem.query.count() == 1

    def test_add_items_recomputes_total(self, ledger):
        po = _create(ledger, total_amount=None, items=ITEMS[:1])
        po_service.add_purchase_order_items(po, ledger.member, ITEMS[1:])
        db.session.refresh(po)
        assert len(po.items) == 2
        assert po.total_amount == Decimal("690000.00")

    def test_closed_cannot_be_updated(self, ledger):
        po = po_service.approve_purchase_order(_create(ledger), ledger.manager)
        po = po_service.close_purchase_order(po, ledger.manager)
        with pytest.raises(InvalidStateError):
            po_service.update_purchase_order(po, ledger.member, {"notes": "late edit"})

    def test_delete_without_invoices(self, ledger):
        po = _create(ledger)
        po_id = po.id
        po_service.delete_purchase_order(po, ledger.member)
        assert db.session.get(PurchaseOrder, po_id) is None

    def test_delete_refused_with_linked_invoice(self, ledger):
        po = _create(ledger, vendor_id=ledger.vendor.id)
        invoice = invoice_service.create_invoice(
            ledger.project,
            ledger.member,
            description="First delivery",
            category="materials",
            amount="1000",
            purchase_order_id=po.id,
        )
        # vendor falls back to the purchase order's vendor
        assert invoice.vendor_id == ledger.vendor.id

        with pytest.raises(ForbiddenError):
            po_service.delete_purchase_order(po, ledger.member)
        assert db.session.get(PurchaseOrder, po.id) is not None

    def test_paying_invoice_does_not_touch_po(self, ledger):
        po = po_service.approve_purchase_order(_create(ledger), ledger.manager)
        invoice = invoice_service.create_invoice(
            ledger.project, ledger.member, description="x", category="materials", amount="10", purchase_order_id=po.id
        )
        invoice = invoice_service.approve_invoice(invoice, ledger.manager)
        invoice_service.mark_invoice_paid(invoice, ledger.manager, payment_method="cash")
        assert db.session.get(PurchaseOrder, po.id).status == PurchaseOrderStatus.APPROVED


class TestPurchaseOrderStats:

    def test_counts_and_value(self, ledger):
        po_service.approve_purchase_order(_create(ledger, total_amount="100"), ledger.manager)
        _create(ledger, total_amount="50")
        _create(ledger, total_amount="25", status="draft")

        stats = po_service.purchase_order_stats(po_service.list_purchase_orders(ledger.project.id))
        assert stats == {"totalValue": 175.0, "approvedCount": 1, "pendingCount": 1, "totalCount": 3}
