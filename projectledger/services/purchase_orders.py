"""
projectledger/services/purchase_orders.py

Purchase order ledger.

    draft --submit--> pending --approve--> approved --close--> closed
                      pending --reject---> rejected

Invoices may reference a PO for traceability; nothing propagates between the
two ledgers automatically (paying an invoice does not close its PO).

Totals: when line items are supplied, total_amount is the sum of the item
totals. Without items the caller's total_amount (> 0) is kept as entered.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable

from flask import current_app

from ..audit import log_action, serialize_model
from ..errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Invoice,
    Project,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    User,
    Vendor,
    coerce_enum,
    utcnow,
)
from ..utils import clean_str, next_document_number, parse_date, parse_decimal, require_positive_amount
from . import conditional_transition, unit_of_work

logger = logging.getLogger(__name__)

PO_PREFIX = "PO"

EDITABLE_FIELDS = (
    "vendor_id",
    "description",
    "category",
    "total_amount",
    "currency",
    "expiry_date",
    "delivery_date",
    "terms",
    "notes",
    "items",
)


# ---------------------------------------------------------------------
# Lookups & parsing
# ---------------------------------------------------------------------
def get_purchase_order(project: Project, po_id: int) -> PurchaseOrder:
    po = PurchaseOrder.query.filter_by(id=po_id, project_id=project.id).first()
    if po is None:
        raise NotFoundError("Purchase order not found")
    return po


def _tenant_vendor(project: Project, vendor_id) -> Vendor | None:
    if vendor_id in (None, ""):
        return None
    vendor = Vendor.query.filter_by(id=vendor_id, customer_id=project.customer_id).first()
    if vendor is None:
        raise NotFoundError("Vendor not found")
    return vendor


def next_po_number(project_id: int, year: int | None = None) -> str:
    year = year or date.today().year
    existing = [
        number
        for (number,) in db.session.query(PurchaseOrder.po_number)
        .filter(PurchaseOrder.project_id == project_id, PurchaseOrder.po_number.like(f"{PO_PREFIX}-{year}-%"))
        .all()
    ]
    return next_document_number(PO_PREFIX, year, existing)


def _build_items(raw_items: Iterable[dict]) -> list[PurchaseOrderItem]:
    """Validate item payloads (camelCase or snake_case keys) into unsaved rows."""
    items = []
    for index, raw in enumerate(raw_items or []):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", {"item": index})
        description = clean_str(raw.get("description"))
        if not description:
            raise ValidationError("Item description is required", {"item": index})
        quantity = parse_decimal(raw.get("quantity"))
        unit_price = parse_decimal(raw.get("unitPrice", raw.get("unit_price")))
        if quantity is None or quantity <= 0:
            raise ValidationError("Item quantity must be greater than zero", {"item": index})
        if unit_price is None or unit_price < 0:
            raise ValidationError("Item unitPrice must be zero or more", {"item": index})

        item = PurchaseOrderItem(
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            unit=clean_str(raw.get("unit")),
            category=clean_str(raw.get("category")),
            notes=clean_str(raw.get("notes")),
        )
        item.recalc_total()
        items.append(item)
    return items


def _items_sum(items: Iterable[PurchaseOrderItem]) -> Decimal:
    return sum((Decimal(str(i.total_price)) for i in items), Decimal("0.00"))


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------
def list_purchase_orders(project_id: int, *, status=None, vendor_id=None):
    q = PurchaseOrder.query.filter(PurchaseOrder.project_id == project_id)
    if status not in (None, "", "all"):
        wanted = coerce_enum(PurchaseOrderStatus, status)
        if wanted is None:
            raise ValidationError("Unknown purchase order status", {"status": status})
        q = q.filter(PurchaseOrder.status == wanted)
    if vendor_id:
        q = q.filter(PurchaseOrder.vendor_id == vendor_id)
    return q.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())


def purchase_order_stats(purchase_orders: Iterable[PurchaseOrder]) -> dict:
    orders = list(purchase_orders)
    return {
        "totalValue": float(sum((po.total_amount or Decimal("0") for po in orders), Decimal("0"))),
        "approvedCount": sum(1 for po in orders if po.status == PurchaseOrderStatus.APPROVED),
        "pendingCount": sum(1 for po in orders if po.status == PurchaseOrderStatus.PENDING),
        "totalCount": len(orders),
    }


def linked_invoices(po: PurchaseOrder):
    return Invoice.query.filter_by(purchase_order_id=po.id).order_by(Invoice.created_at.desc())


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------
def create_purchase_order(
    project: Project,
    actor: User,
    *,
    description,
    category,
    total_amount=None,
    currency=None,
    vendor_id=None,
    items=None,
    status=None,
    expiry_date=None,
    delivery_date=None,
    terms=None,
    notes=None,
) -> PurchaseOrder:
    description = clean_str(description)
    category = clean_str(category)
    if not description:
        raise ValidationError("description is required", {"field": "description"})
    if not category:
        raise ValidationError("category is required", {"field": "category"})

    initial = coerce_enum(PurchaseOrderStatus, status) if status else PurchaseOrderStatus.PENDING
    if initial not in (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING):
        raise ValidationError("New purchase orders must be draft or pending", {"status": status})

    line_items = _build_items(items)
    if line_items:
        total = _items_sum(line_items)
        if total <= 0:
            raise ValidationError("Line items must add up to more than zero", {"field": "items"})
    else:
        total = require_positive_amount(total_amount, "totalAmount")

    vendor = _tenant_vendor(project, vendor_id)

    with unit_of_work():
        po = PurchaseOrder(
            project_id=project.id,
            vendor_id=vendor.id if vendor else None,
            po_number=next_po_number(project.id),
            description=description,
            category=category,
            total_amount=total,
            currency=(clean_str(currency) or project.currency or current_app.config["DEFAULT_CURRENCY"]).upper(),
            status=initial,
            requested_by=actor.id,
            expiry_date=parse_date(expiry_date, "expiryDate"),
            delivery_date=parse_date(delivery_date, "deliveryDate"),
            terms=clean_str(terms),
            notes=clean_str(notes),
            items=line_items,
        )
        db.session.add(po)
        db.session.flush()
        log_action(po, "CREATE", actor=actor, after=serialize_model(po))

    logger.info("Purchase order %s created in project %s", po.po_number, project.id)
    return po


def update_purchase_order(po: PurchaseOrder, actor: User, fields: dict) -> PurchaseOrder:
    """
    Edit a purchase order that is not closed.

    Status is not editable here (use the workflow operations). A non-empty
    `items` list replaces the existing line items wholesale and re-derives
    the total.
    """
    if po.status == PurchaseOrderStatus.CLOSED:
        raise InvalidStateError("Closed purchase orders cannot be modified")

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
    if "currency" in fields and clean_str(fields["currency"]):
        changes["currency"] = clean_str(fields["currency"]).upper()
    if "vendor_id" in fields:
        vendor = _tenant_vendor(po.project, fields["vendor_id"])
        changes["vendor_id"] = vendor.id if vendor else None
    if "expiry_date" in fields:
        changes["expiry_date"] = parse_date(fields["expiry_date"], "expiryDate")
    if "delivery_date" in fields:
        changes["delivery_date"] = parse_date(fields["delivery_date"], "deliveryDate")
    for name in ("terms", "notes"):
        if name in fields:
            changes[name] = clean_str(fields[name])

    new_items = _build_items(fields.get("items") or [])
    if new_items:
        changes["total_amount"] = _items_sum(new_items)
    elif "total_amount" in fields:
        if po.items:
            raise ValidationError(
                "totalAmount is derived from line items; update the items instead",
                {"field": "totalAmount"},
            )
        changes["total_amount"] = require_positive_amount(fields["total_amount"], "totalAmount")

    before = serialize_model(po)

    with unit_of_work():
        for name, value in changes.items():
            setattr(po, name, value)
        if new_items:
            po.items = new_items
        db.session.flush()
        log_action(po, "UPDATE", actor=actor, before=before, after=serialize_model(po))

    return po


def add_purchase_order_items(po: PurchaseOrder, actor: User, raw_items) -> list[PurchaseOrderItem]:
    """Append line items and recompute the total from all items."""
    if po.status == PurchaseOrderStatus.CLOSED:
        raise InvalidStateError("Closed purchase orders cannot be modified")
    new_items = _build_items(raw_items)
    if not new_items:
        raise ValidationError("Items array is required", {"field": "items"})

    before = serialize_model(po)

    with unit_of_work():
        po.items.extend(new_items)
        po.total_amount = po.items_total()
        db.session.flush()
        log_action(po, "UPDATE", actor=actor, before=before, after=serialize_model(po))

    return new_items


def delete_purchase_order(po: PurchaseOrder, actor: User) -> None:
    """Delete a purchase order; refused while invoices reference it."""
    invoice_count = Invoice.query.filter_by(purchase_order_id=po.id).count()
    if invoice_count:
        raise ForbiddenError(
            "Cannot delete purchase order with linked invoices",
            {"invoices": invoice_count},
        )

    with unit_of_work():
        log_action(po, "DELETE", actor=actor, before=serialize_model(po))
        db.session.delete(po)

    logger.info("Purchase order %s deleted by user %s", po.po_number, actor.id)


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------
def _transition(po: PurchaseOrder, actor: User, expected, values: dict, action: str, verb: str) -> PurchaseOrder:
    if po.status != expected:
        raise InvalidStateError(
            f"Cannot {verb} a purchase order that is {po.status.value}",
            {"status": po.status.value, "requiredStatus": expected.value},
        )
    before = serialize_model(po)

    with unit_of_work():
        conditional_transition(PurchaseOrder, po, expected, values, "Purchase order")
        log_action(po, action, actor=actor, before=before, after=serialize_model(po))

    logger.info("Purchase order %s %s by user %s", po.po_number, po.status.value, actor.id)
    return po


def submit_purchase_order(po: PurchaseOrder, actor: User) -> PurchaseOrder:
    return _transition(
        po, actor, PurchaseOrderStatus.DRAFT, {"status": PurchaseOrderStatus.PENDING}, "SUBMIT", "submit"
    )


def approve_purchase_order(po: PurchaseOrder, actor: User) -> PurchaseOrder:
    return _transition(
        po,
        actor,
        PurchaseOrderStatus.PENDING,
        {"status": PurchaseOrderStatus.APPROVED, "approved_by": actor.id, "approved_at": utcnow()},
        "APPROVE",
        "approve",
    )


def reject_purchase_order(po: PurchaseOrder, actor: User, reason: str | None = None) -> PurchaseOrder:
    reason = clean_str(reason)
    notes = po.notes
    if reason:
        notes = f"{notes}\nRejection reason: {reason}" if notes else f"Rejection reason: {reason}"
    return _transition(
        po,
        actor,
        PurchaseOrderStatus.PENDING,
        {
            "status": PurchaseOrderStatus.REJECTED,
            "approved_by": actor.id,
            "approved_at": utcnow(),
            "notes": notes,
        },
        "REJECT",
        "reject",
    )


def close_purchase_order(po: PurchaseOrder, actor: User) -> PurchaseOrder:
    return _transition(
        po, actor, PurchaseOrderStatus.APPROVED, {"status": PurchaseOrderStatus.CLOSED}, "CLOSE", "close"
    )
