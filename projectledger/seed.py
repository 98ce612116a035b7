"""
projectledger/seed.py

Demo data and user bootstrap for the CLI.

Rules:
- Safe to run multiple times (idempotent): rows are matched by name / email
  and only created when missing.
- Vendors, budget lines and the demo project belong to the demo tenant.

NOTE:
- Invoices and purchase orders are not seeded; they are created through the
  API so numbering and audit entries stay consistent.
"""

from __future__ import annotations

from decimal import Decimal

from .extensions import db
from .models import (
    BudgetLineItem,
    Customer,
    Project,
    User,
    UserRole,
    Vendor,
    VendorType,
    coerce_enum,
)


DEMO_CUSTOMER = "Demo Developments Ltd"

DEMO_USERS = [
    # email, name, role, password
    ("owner@demo.test", "Demo Owner", UserRole.OWNER, "owner-password"),
    ("manager@demo.test", "Demo Manager", UserRole.MANAGER, "manager-password"),
    ("viewer@demo.test", "Demo Viewer", UserRole.VIEWER, "viewer-password"),
]

DEMO_PROJECT = ("Lekki Gardens Phase 2", Decimal("50000000.00"), "NGN")

DEMO_BUDGET = [
    # category, planned amount
    ("materials", Decimal("20000000.00")),
    ("labor", Decimal("15000000.00")),
    ("equipment", Decimal("8000000.00")),
    ("permits", Decimal("2000000.00")),
]

DEMO_VENDORS = [
    # name, type, contact, email, rating
    ("BuildRight Supplies", VendorType.SUPPLIER, "Ada Okafor", "sales@buildright.test", Decimal("4.5")),
    ("Prime Contractors", VendorType.CONTRACTOR, "Tunde Bello", "info@primecontractors.test", Decimal("4.0")),
    ("Structura Consulting", VendorType.CONSULTANT, "Ngozi Eze", "hello@structura.test", None),
]


def _get_or_create_customer(name: str) -> Customer:
    customer = Customer.query.filter_by(name=name).first()
    if not customer:
        customer = Customer(name=name)
        db.session.add(customer)
        db.session.flush()
    return customer


def create_user(customer_name: str, email: str, password: str, *, name=None, role="owner") -> User:
    """Create (or update the password and role of) a user in the given tenant."""
    user_role = coerce_enum(UserRole, role)
    if user_role is None:
        raise ValueError(f"Unknown role {role!r}; expected one of {[r.value for r in UserRole]}")

    customer = _get_or_create_customer(customer_name)
    email = email.strip().lower()

    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(customer_id=customer.id, email=email, name=name, role=user_role, is_active=True)
        db.session.add(user)
    else:
        user.role = user_role
        if name:
            user.name = name
    user.set_password(password)

    db.session.commit()
    return user


def seed_demo() -> dict:
    """
    Create the demo tenant with users, one project, budget lines and vendors.

    Returns counts of rows created in this run.
    """
    created = {"users": 0, "projects": 0, "budgetLines": 0, "vendors": 0}

    customer = _get_or_create_customer(DEMO_CUSTOMER)

    for email, name, role, password in DEMO_USERS:
        if User.query.filter_by(email=email).first():
            continue
        user = User(customer_id=customer.id, email=email, name=name, role=role, is_active=True)
        user.set_password(password)
        db.session.add(user)
        created["users"] += 1

    project_name, budget, currency = DEMO_PROJECT
    project = Project.query.filter_by(customer_id=customer.id, name=project_name).first()
    if not project:
        project = Project(customer_id=customer.id, name=project_name, total_budget=budget, currency=currency)
        db.session.add(project)
        db.session.flush()
        created["projects"] += 1

    for category, planned in DEMO_BUDGET:
        exists = BudgetLineItem.query.filter_by(project_id=project.id, category=category).first()
        if exists:
            continue
        db.session.add(BudgetLineItem(project_id=project.id, category=category, planned_amount=planned))
        created["budgetLines"] += 1

    for vendor_name, vendor_type, contact, email, rating in DEMO_VENDORS:
        exists = Vendor.query.filter_by(customer_id=customer.id, name=vendor_name).first()
        if exists:
            continue
        db.session.add(
            Vendor(
                customer_id=customer.id,
                name=vendor_name,
                vendor_type=vendor_type,
                contact_person=contact,
                email=email,
                rating=rating,
                currency=currency,
            )
        )
        created["vendors"] += 1

    db.session.commit()
    return created
