"""
Project Ledger – Domain Models

Tenancy:
- Customer is the tenant. Users, projects and vendors belong to exactly one Customer.
- Purchase orders, invoices, expenses and budget lines belong to a Project.

Workflow state:
- Invoice / PurchaseOrder status columns are canonical enums (see InvoiceStatus,
  PurchaseOrderStatus). Inbound strings are normalized through `coerce_enum`,
  so "Paid", "paid" and InvoiceStatus.PAID all mean the same thing.

IMPORTANT:
- UI is never trusted. Any selection must be validated server-side in services.
- Money is Numeric(14, 2). Always go through _to_decimal()/_money() when doing arithmetic.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db
from .utils import format_currency


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def utcnow() -> datetime:
    """Naive UTC timestamp (columns are "timestamp without time zone")."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_decimal(value) -> Decimal:
    """Convert Numeric/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value))


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _as_float(value) -> float | None:
    """JSON representation of a Numeric column."""
    if value is None:
        return None
    return float(value)


def _iso(value) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _enum_column(enum_cls, name: str, default):
    """String-backed enum column (portable across SQLite/PostgreSQL)."""
    return db.Column(
        SAEnum(
            enum_cls,
            name=name,
            values_callable=lambda cls: [e.value for e in cls],
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default=default,
        index=True,
    )


# ---------------------------------------------------------------------
# Canonical enumerations
# ---------------------------------------------------------------------
class InvoiceStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class PurchaseOrderStatus(enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class VendorType(enum.Enum):
    CONTRACTOR = "contractor"
    SUPPLIER = "supplier"
    CONSULTANT = "consultant"
    SUBCONTRACTOR = "subcontractor"


class VendorStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLACKLISTED = "blacklisted"


class UserRole(enum.Enum):
    OWNER = "owner"
    MANAGER = "manager"
    MEMBER = "member"
    VIEWER = "viewer"


class PaymentMethod(enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    MOBILE_MONEY = "mobile_money"
    OTHER = "other"


def coerce_enum(enum_cls, value):
    """
    Normalize user input to an enum member.

    Accepts members, values in any letter case and surrounding whitespace.
    Returns None for unknown values; callers decide whether that is an error.
    """
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    raw = str(value).strip().lower()
    for member in enum_cls:
        if member.value == raw:
            return member
    return None


# ---------------------------------------------------------------------
# Tenancy & users
# ---------------------------------------------------------------------
class Customer(db.Model):
    """Tenant organization."""

    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)

    # None => use STORAGE_QUOTA_BYTES from config
    storage_limit_bytes = db.Column(db.BigInteger, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    users = db.relationship("User", back_populates="customer", lazy=True)
    projects = db.relationship("Project", back_populates="customer", lazy=True)

    def __repr__(self):
        return f"<Customer {self.name}>"


class User(UserMixin, db.Model):
    """Login user, always attached to a Customer."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role = _enum_column(UserRole, "user_role", UserRole.MEMBER)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer", back_populates="users")

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def is_owner(self):
        return self.role == UserRole.OWNER

    def can_approve(self):
        return self.role in (UserRole.OWNER, UserRole.MANAGER)

    def can_edit(self):
        return self.role != UserRole.VIEWER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "customerId": self.customer_id,
        }

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------------------------------------------------------------
# Projects & budget
# ---------------------------------------------------------------------
class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(50), nullable=False, default="active", index=True)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    total_budget = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # Cumulative paid spend of all expenses. Moved only by SQL-side increments, never set from user input.
    actual_spend = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer", back_populates="projects")

    budget_items = db.relationship(
        "BudgetLineItem",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="BudgetLineItem.category",
    )

    @property
    def remaining_budget(self) -> Decimal:
        return _money(_to_decimal(self.total_budget) - _to_decimal(self.actual_spend))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customerId": self.customer_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "currency": self.currency,
            "totalBudget": _as_float(self.total_budget),
            "actualSpend": _as_float(self.actual_spend),
            "remainingBudget": _as_float(self.remaining_budget),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Project {self.name}>"


class BudgetLineItem(db.Model):
    __tablename__ = "budget_line_items"

    id = db.Column(db.Integer, primary_key=True)

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    category = db.Column(db.String(100), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    planned_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    project = db.relationship("Project", back_populates="budget_items")

    __table_args__ = (
        db.UniqueConstraint("project_id", "category", name="uq_budget_project_category"),
    )


# ---------------------------------------------------------------------
# Vendors
# ---------------------------------------------------------------------
class Vendor(db.Model):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(255), nullable=False, index=True)
    contact_person = db.Column(db.String(255))
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    address = db.Column(db.Text)

    vendor_type = _enum_column(VendorType, "vendor_type", VendorType.SUPPLIER)
    specialization = db.Column(db.String(255))

    # 0.0 – 5.0, validated in services/vendors.py
    rating = db.Column(db.Numeric(2, 1), nullable=True)

    status = _enum_column(VendorStatus, "vendor_status", VendorStatus.ACTIVE)

    total_contracts = db.Column(db.Integer, nullable=False, default=0)
    total_value = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customerId": self.customer_id,
            "name": self.name,
            "contactPerson": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "vendorType": self.vendor_type.value,
            "specialization": self.specialization,
            "rating": _as_float(self.rating),
            "status": self.status.value,
            "totalContracts": self.total_contracts,
            "totalValue": _as_float(self.total_value),
            "currency": self.currency,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def summary_dict(self) -> dict:
        """Compact vendor block embedded in POs and invoices."""
        return {
            "id": self.id,
            "name": self.name,
            "contactPerson": self.contact_person,
            "email": self.email,
            "phone": self.phone,
        }

    def __repr__(self):
        return f"<Vendor {self.name}>"


# ---------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------
class PurchaseOrder(db.Model):
    __tablename__ = "purchase_orders"

    id = db.Column(db.Integer, primary_key=True)

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    po_number = db.Column(db.String(50), nullable=False, index=True)

    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(100), nullable=False, index=True)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    status = _enum_column(PurchaseOrderStatus, "purchase_order_status", PurchaseOrderStatus.PENDING)

    requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)

    expiry_date = db.Column(db.Date, nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)
    terms = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    project = db.relationship("Project")
    vendor = db.relationship("Vendor", backref=db.backref("purchase_orders", lazy=True))
    requester = db.relationship("User", foreign_keys=[requested_by])
    approver = db.relationship("User", foreign_keys=[approved_by])

    items = db.relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "po_number", name="uq_po_project_number"),
    )

    def items_total(self) -> Decimal:
        total = Decimal("0.00")
        for item in self.items:
            total += _to_decimal(item.total_price)
        return _money(total)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "projectId": self.project_id,
            "vendorId": self.vendor_id,
            "vendor": self.vendor.summary_dict() if self.vendor else None,
            "poNumber": self.po_number,
            "description": self.description,
            "category": self.category,
            "totalAmount": _as_float(self.total_amount),
            "totalAmountFormatted": format_currency(self.total_amount, self.currency),
            "currency": self.currency,
            "status": self.status.value,
            "requestedBy": self.requested_by,
            "approvedBy": self.approved_by,
            "approvedAt": _iso(self.approved_at),
            "expiryDate": _iso(self.expiry_date),
            "deliveryDate": _iso(self.delivery_date),
            "terms": self.terms,
            "notes": self.notes,
            "itemCount": len(self.items),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f"<PurchaseOrder {self.po_number} {self.status.value}>"


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"

    id = db.Column(db.Integer, primary_key=True)

    purchase_order_id = db.Column(
        db.Integer,
        db.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    unit = db.Column(db.String(50))
    category = db.Column(db.String(100))
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow)

    purchase_order = db.relationship("PurchaseOrder", back_populates="items")

    def recalc_total(self):
        self.total_price = _money(_to_decimal(self.quantity) * _to_decimal(self.unit_price))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": _as_float(self.quantity),
            "unitPrice": _as_float(self.unit_price),
            "totalPrice": _as_float(self.total_price),
            "unit": self.unit,
            "category": self.category,
            "notes": self.notes,
        }


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    purchase_order_id = db.Column(
        db.Integer,
        db.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    invoice_number = db.Column(db.String(50), nullable=False, index=True)

    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(100), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    status = _enum_column(InvoiceStatus, "invoice_status", InvoiceStatus.PENDING)

    due_date = db.Column(db.Date, nullable=True)
    paid_date = db.Column(db.Date, nullable=True)
    payment_method = db.Column(db.String(50), nullable=True)
    payment_reference = db.Column(db.String(255), nullable=True)

    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    project = db.relationship("Project")
    vendor = db.relationship("Vendor", backref=db.backref("invoices", lazy=True))
    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("invoices", lazy=True))
    approver = db.relationship("User", foreign_keys=[approved_by])

    attachments = db.relationship(
        "InvoiceAttachment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceAttachment.uploaded_at",
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "invoice_number", name="uq_invoice_project_number"),
        db.CheckConstraint("amount > 0", name="ck_invoice_amount_positive"),
    )

    @property
    def attachment_paths(self) -> list[str]:
        return [a.file_path for a in self.attachments]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "purchaseOrderId": self.purchase_order_id,
            "purchaseOrder": (
                {
                    "id": self.purchase_order.id,
                    "poNumber": self.purchase_order.po_number,
                    "totalAmount": _as_float(self.purchase_order.total_amount),
                    "status": self.purchase_order.status.value,
                }
                if self.purchase_order
                else None
            ),
            "vendorId": self.vendor_id,
            "vendor": self.vendor.summary_dict() if self.vendor else None,
            "invoiceNumber": self.invoice_number,
            "description": self.description,
            "category": self.category,
            "amount": _as_float(self.amount),
            "amountFormatted": format_currency(self.amount, self.currency),
            "currency": self.currency,
            "status": self.status.value,
            "dueDate": _iso(self.due_date),
            "paidDate": _iso(self.paid_date),
            "paymentMethod": self.payment_method,
            "paymentReference": self.payment_reference,
            "approvedBy": self.approved_by,
            "approvedAt": _iso(self.approved_at),
            "notes": self.notes,
            "attachments": self.attachment_paths,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Invoice {self.invoice_number} {self.status.value}>"


class InvoiceAttachment(db.Model):
    """
    Uploaded file metadata.

    invoice_id is NULL between upload and invoice creation (the UI uploads
    first, then submits the invoice with the returned paths).
    """

    __tablename__ = "invoice_attachments"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    file_path = db.Column(db.String(512), nullable=False, unique=True)
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.BigInteger, nullable=False, default=0)
    mime_type = db.Column(db.String(255), nullable=False, default="application/octet-stream")
    description = db.Column(db.String(255), nullable=True)

    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    uploaded_at = db.Column(db.DateTime, default=utcnow, index=True)

    invoice = db.relationship("Invoice", back_populates="attachments")
    uploader = db.relationship("User", foreign_keys=[uploaded_by])


# ---------------------------------------------------------------------
# Expenses (actual spend)
# ---------------------------------------------------------------------
class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # One expense per paid invoice; NULL for manual expenses
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    expense_type = db.Column(db.String(50), nullable=False, default="invoice")
    category = db.Column(db.String(100), nullable=False, index=True)
    invoice_number = db.Column(db.String(50), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)

    invoice_date = db.Column(db.DateTime, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    paid_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(50), nullable=False, default="approved")
    payment_status = db.Column(db.String(50), nullable=False, default="paid", index=True)
    payment_method = db.Column(db.String(50), nullable=True)
    payment_reference = db.Column(db.String(255), nullable=True)

    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    project = db.relationship("Project")
    invoice = db.relationship("Invoice", backref=db.backref("expense", uselist=False))
    vendor = db.relationship("Vendor")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "invoiceId": self.invoice_id,
            "vendorId": self.vendor_id,
            "amount": _as_float(self.amount),
            "taxAmount": _as_float(self.tax_amount),
            "totalAmount": _as_float(self.total_amount),
            "currency": self.currency,
            "expenseType": self.expense_type,
            "category": self.category,
            "invoiceNumber": self.invoice_number,
            "description": self.description,
            "invoiceDate": _iso(self.invoice_date),
            "dueDate": _iso(self.due_date),
            "paidDate": _iso(self.paid_date),
            "status": self.status,
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method,
            "paymentReference": self.payment_reference,
            "approvedBy": self.approved_by,
            "approvedAt": _iso(self.approved_at),
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
        }


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Who did what to which entity, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(255), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))
