"""
projectledger/services/vendors.py

Vendor registry (tenant scoped).

Rules:
- name and vendor type are required; vendor names are unique per tenant
  (case-insensitive).
- email, when given, must look like an address.
- rating, when given, lies in [0, 5].
- a vendor referenced by purchase orders or invoices cannot be deleted;
  mark it inactive instead.
"""

from __future__ import annotations

import logging
import re
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import func, or_

from ..audit import log_action, serialize_model
from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Customer,
    Invoice,
    InvoiceStatus,
    PurchaseOrder,
    PurchaseOrderStatus,
    User,
    Vendor,
    VendorStatus,
    VendorType,
    coerce_enum,
)
from ..utils import LIKE_ESCAPE, clean_str, contains_pattern, parse_decimal
from . import unit_of_work

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

RATING_MIN = Decimal("0")
RATING_MAX = Decimal("5")
RATING_STEP = Decimal("0.1")

TEXT_FIELDS = ("contact_person", "phone", "address", "specialization", "notes")


# ---------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------
def _validate_email(value) -> str | None:
    email = clean_str(value)
    if email is None:
        return None
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email address", {"field": "email", "value": email})
    return email.lower()


def _validate_rating(value) -> Decimal | None:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    rating = parse_decimal(value)
    if rating is None or not rating.is_finite():
        raise ValidationError("Rating must be a number", {"field": "rating", "value": value})
    if rating < RATING_MIN or rating > RATING_MAX:
        raise ValidationError("Rating must be between 0 and 5", {"field": "rating", "value": float(rating)})
    # vendors.rating holds one decimal place
    return rating.quantize(RATING_STEP, rounding=ROUND_HALF_UP)


def _validate_type(value) -> VendorType:
    if not clean_str(value):
        raise ValidationError("vendorType is required", {"field": "vendorType"})
    vendor_type = coerce_enum(VendorType, value)
    if vendor_type is None:
        raise ValidationError(
            "Unknown vendor type",
            {"field": "vendorType", "allowed": [t.value for t in VendorType]},
        )
    return vendor_type


def _validate_status(value) -> VendorStatus:
    status = coerce_enum(VendorStatus, value)
    if status is None:
        raise ValidationError(
            "Unknown vendor status",
            {"field": "status", "allowed": [s.value for s in VendorStatus]},
        )
    return status


def _ensure_unique_name(customer_id: int, name: str, exclude_id: int | None = None) -> None:
    q = Vendor.query.filter(
        Vendor.customer_id == customer_id,
        func.lower(Vendor.name) == name.lower(),
    )
    if exclude_id is not None:
        q = q.filter(Vendor.id != exclude_id)
    if q.first() is not None:
        raise ValidationError("A vendor with this name already exists", {"field": "name"})


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------
def get_vendor(customer_id: int, vendor_id: int) -> Vendor:
    vendor = Vendor.query.filter_by(id=vendor_id, customer_id=customer_id).first()
    if vendor is None:
        raise NotFoundError("Vendor not found")
    return vendor


def list_vendors(customer_id: int, *, status=None, vendor_type=None, search=None):
    q = Vendor.query.filter(Vendor.customer_id == customer_id)

    if status not in (None, "", "all"):
        q = q.filter(Vendor.status == _validate_status(status))
    if vendor_type not in (None, "", "all"):
        q = q.filter(Vendor.vendor_type == _validate_type(vendor_type))

    term = clean_str(search)
    if term:
        like = contains_pattern(term)
        q = q.filter(
            or_(
                Vendor.name.ilike(like, escape=LIKE_ESCAPE),
                Vendor.email.ilike(like, escape=LIKE_ESCAPE),
                Vendor.contact_person.ilike(like, escape=LIKE_ESCAPE),
            )
        )

    return q.order_by(Vendor.created_at.desc(), Vendor.id.desc())


def vendor_stats(vendor: Vendor) -> dict:
    """Purchase order and invoice counts for one vendor."""
    orders = PurchaseOrder.query.filter_by(vendor_id=vendor.id).all()
    invoices = Invoice.query.filter_by(vendor_id=vendor.id).all()
    return {
        "purchaseOrders": {
            "total": len(orders),
            "approved": sum(1 for po in orders if po.status == PurchaseOrderStatus.APPROVED),
            "pending": sum(1 for po in orders if po.status == PurchaseOrderStatus.PENDING),
            "totalValue": float(sum((po.total_amount or Decimal("0") for po in orders), Decimal("0"))),
        },
        "invoices": {
            "total": len(invoices),
            "paid": sum(1 for inv in invoices if inv.status == InvoiceStatus.PAID),
            "pending": sum(1 for inv in invoices if inv.status == InvoiceStatus.PENDING),
        },
    }


# ---------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------
def create_vendor(customer: Customer, actor: User, data: dict) -> Vendor:
    name = clean_str(data.get("name"))
    if not name:
        raise ValidationError("name is required", {"field": "name"})
    vendor_type = _validate_type(data.get("vendor_type"))
    email = _validate_email(data.get("email"))
    rating = _validate_rating(data.get("rating"))
    status = _validate_status(data["status"]) if clean_str(data.get("status")) else VendorStatus.ACTIVE
    _ensure_unique_name(customer.id, name)

    with unit_of_work():
        vendor = Vendor(
            customer_id=customer.id,
            name=name,
            email=email,
            vendor_type=vendor_type,
            rating=rating,
            status=status,
            currency=(clean_str(data.get("currency")) or current_app.config["DEFAULT_CURRENCY"]).upper(),
            **{field: clean_str(data.get(field)) for field in TEXT_FIELDS},
        )
        db.session.add(vendor)
        db.session.flush()
        log_action(vendor, "CREATE", actor=actor, after=serialize_model(vendor))

    logger.info("Vendor %s created for customer %s", vendor.id, customer.id)
    return vendor


def update_vendor(vendor: Vendor, actor: User, data: dict) -> Vendor:
    """Partial update; only keys present in `data` change."""
    changes = {}
    if "name" in data:
        name = clean_str(data["name"])
        if not name:
            raise ValidationError("name is required", {"field": "name"})
        if name.lower() != vendor.name.lower():
            _ensure_unique_name(vendor.customer_id, name, exclude_id=vendor.id)
        changes["name"] = name
    if "vendor_type" in data:
        changes["vendor_type"] = _validate_type(data["vendor_type"])
    if "status" in data:
        changes["status"] = _validate_status(data["status"])
    if "email" in data:
        changes["email"] = _validate_email(data["email"])
    if "rating" in data:
        changes["rating"] = _validate_rating(data["rating"])
    if "currency" in data and clean_str(data["currency"]):
        changes["currency"] = clean_str(data["currency"]).upper()
    for field in TEXT_FIELDS:
        if field in data:
            changes[field] = clean_str(data[field])

    before = serialize_model(vendor)

    with unit_of_work():
        for name, value in changes.items():
            setattr(vendor, name, value)
        db.session.flush()
        log_action(vendor, "UPDATE", actor=actor, before=before, after=serialize_model(vendor))

    return vendor


def delete_vendor(vendor: Vendor, actor: User) -> None:
    po_count = PurchaseOrder.query.filter_by(vendor_id=vendor.id).count()
    invoice_count = Invoice.query.filter_by(vendor_id=vendor.id).count()
    if po_count or invoice_count:
        raise ForbiddenError(
            "Cannot delete vendor with existing purchase orders or invoices. "
            "Consider marking as inactive instead.",
            {"purchaseOrders": po_count, "invoices": invoice_count},
        )

    with unit_of_work():
        log_action(vendor, "DELETE", actor=actor, before=serialize_model(vendor))
        db.session.delete(vendor)

    logger.info("Vendor %s deleted by user %s", vendor.id, actor.id)
