"""
Project Ledger Test Configuration

Shared fixtures for all tests.

- `app` / `client`: application on a temporary SQLite file with uploads under tmp_path.
- `tenant`: ids and bearer tokens of a seeded customer (one user per role) and project.
- `ledger`: the same rows loaded inside a pushed app context, for service-level tests.

API tests must not hold an app context open while calling the client, so
each request resolves its own current_user.
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest

from config import TestingConfig
from projectledger import create_app
from projectledger.extensions import db
from projectledger.models import Customer, Project, User, UserRole, Vendor, VendorType
from projectledger.security import issue_token


ROLES = {
    "owner": UserRole.OWNER,
    "manager": UserRole.MANAGER,
    "member": UserRole.MEMBER,
    "viewer": UserRole.VIEWER,
}


# =============================================================================
# FIXTURES: Application
# =============================================================================

@pytest.fixture
def app(tmp_path):
    """Flask app bound to a fresh SQLite database file."""
    app = create_app(
        TestingConfig,
        {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'ledger.db'}",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        },
    )
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# FIXTURES: Sample Data
# =============================================================================

@pytest.fixture
def tenant(app):
    """One customer with a user per role, a project and a vendor."""
    with app.app_context():
        customer = Customer(name="Acme Builders")
        db.session.add(customer)
        db.session.flush()

        users = {}
        for key, role in ROLES.items():
            user = User(
                customer_id=customer.id,
                email=f"{key}@acme.test",
                name=key.title(),
                role=role,
                is_active=True,
            )
            user.set_password(f"{key}-password")
            db.session.add(user)
            users[key] = user

        project = Project(
            customer_id=customer.id,
            name="Riverside Towers",
            currency="NGN",
            total_budget=Decimal("1000000.00"),
        )
        vendor = Vendor(
            customer_id=customer.id,
            name="BuildRight Supplies",
            vendor_type=VendorType.SUPPLIER,
            email="sales@buildright.test",
        )
        db.session.add_all([project, vendor])
        db.session.commit()

        return SimpleNamespace(
            customer_id=customer.id,
            project_id=project.id,
            vendor_id=vendor.id,
            user_ids={key: user.id for key, user in users.items()},
            tokens={key: issue_token(user) for key, user in users.items()},
        )


@pytest.fixture
def headers(tenant):
    """headers("viewer") -> Authorization header for that role."""
    def _headers(role: str = "owner") -> dict:
        return {"Authorization": f"Bearer {tenant.tokens[role]}"}

    return _headers


@pytest.fixture
def ledger(app, tenant):
    """Seeded rows attached to the session of a pushed app context."""
    with app.app_context():
        yield SimpleNamespace(
            customer=db.session.get(Customer, tenant.customer_id),
            project=db.session.get(Project, tenant.project_id),
            vendor=db.session.get(Vendor, tenant.vendor_id),
            owner=db.session.get(User, tenant.user_ids["owner"]),
            manager=db.session.get(User, tenant.user_ids["manager"]),
            member=db.session.get(User, tenant.user_ids["member"]),
            viewer=db.session.get(User, tenant.user_ids["viewer"]),
        )
