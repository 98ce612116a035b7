"""
Integration Tests: REST API

End-to-end flows through the Flask test client with bearer tokens.
"""
import io

import pytest

from projectledger.extensions import db
from projectledger.models import Expense, Project

BASE = "/api/developer-dashboard"


@pytest.fixture
def invoices_url(tenant):
    return f"{BASE}/projects/{tenant.project_id}/invoices"


def _create_invoice(client, headers, invoices_url, **overrides):
    body = {"description": "Cement and rebar", "category": "materials", "amount": 100000}
    body.update(overrides)
    response = client.post(invoices_url, json=body, headers=headers())
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


# =============================================================================
# AUTH
# =============================================================================

class TestAuth:

    def test_login_returns_token(self, client, tenant):
        response = client.post("/api/auth/login", json={"email": "owner@acme.test", "password": "owner-password"})
        assert response.status_code == 200
        data = response.get_json()
        assert data["user"]["role"] == "owner"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.get_json()["email"] == "owner@acme.test"

    def test_wrong_password(self, client, tenant):
        response = client.post("/api/auth/login", json={"email": "owner@acme.test", "password": "nope"})
        assert response.status_code == 401

    def test_missing_token_is_401(self, client, invoices_url):
        response = client.get(invoices_url)
        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication required"}

    def test_tampered_token_is_401(self, client, invoices_url):
        response = client.get(invoices_url, headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_viewer_is_read_only(self, client, headers, invoices_url):
        assert client.get(invoices_url, headers=headers("viewer")).status_code == 200
        response = client.post(
            invoices_url,
            json={"description": "x", "category": "materials", "amount": 10},
            headers=headers("viewer"),
        )
        assert response.status_code == 403

    def test_member_cannot_approve(self, client, headers, invoices_url):
        invoice = _create_invoice(client, headers, invoices_url)
        response = client.post(f"{invoices_url}/{invoice['id']}/approve", headers=headers("member"))
        assert response.status_code == 403

    def test_only_owner_creates_projects(self, client, headers):
        body = {"name": "Harbour View", "totalBudget": 250000}
        assert client.post(f"{BASE}/projects", json=body, headers=headers("member")).status_code == 403

        created = client.post(f"{BASE}/projects", json=body, headers=headers("owner"))
        assert created.status_code == 201
        assert created.get_json()["data"]["name"] == "Harbour View"

    def test_other_tenant_project_is_404(self, app, client, headers):
        from projectledger.models import Customer

        with app.app_context():
            other = Customer(name="Other Co")
            db.session.add(other)
            db.session.flush()
            project = Project(customer_id=other.id, name="Hidden")
            db.session.add(project)
            db.session.commit()
            project_id = project.id

        response = client.get(f"{BASE}/projects/{project_id}/invoices", headers=headers())
        assert response.status_code == 404


# =============================================================================
# INVOICE SCENARIOS
# =============================================================================

class TestInvoiceScenarios:

    def test_create_approve_pay(self, app, client, headers, invoices_url, tenant):
        invoice = _create_invoice(client, headers, invoices_url)
        assert invoice["status"] == "pending"
        assert invoice["amount"] == 100000.0
        assert invoice["amountFormatted"] == "₦100,000"

        approved = client.post(f"{invoices_url}/{invoice['id']}/approve", headers=headers("manager"))
        assert approved.status_code == 200
        assert approved.get_json()["data"]["status"] == "approved"

        paid = client.post(
            f"{invoices_url}/{invoice['id']}/mark-as-paid",
            json={"paymentMethod": "bank_transfer", "paidDate": "2025-01-15"},
            headers=headers("manager"),
        )
        assert paid.status_code == 200
        body = paid.get_json()
        assert body["data"]["status"] == "paid"
        assert body["data"]["paidDate"] == "2025-01-15"
        assert body["expense"]["amount"] == 100000.0
        assert body["expense"]["projectId"] == tenant.project_id

        with app.app_context():
            expenses = Expense.query.filter_by(project_id=tenant.project_id).all()
            assert len(expenses) == 1
            assert expenses[0].invoice_id == invoice["id"]
            assert float(db.session.get(Project, tenant.project_id).actual_spend) == 100000.0

        again = client.post(
            f"{invoices_url}/{invoice['id']}/mark-paid",
            json={"paymentMethod": "bank_transfer"},
            headers=headers("manager"),
        )
        assert again.status_code == 409

        deleted = client.delete(f"{invoices_url}/{invoice['id']}", headers=headers("owner"))
        assert deleted.status_code == 403

    def test_reject_then_approve_fails(self, client, headers, invoices_url):
        invoice = _create_invoice(client, headers, invoices_url)

        rejected = client.post(
            f"{invoices_url}/{invoice['id']}/reject",
            json={"reason": "pricing mismatch"},
            headers=headers("manager"),
        )
        assert rejected.status_code == 200
        data = rejected.get_json()["data"]
        assert data["status"] == "rejected"
        assert "pricing mismatch" in data["notes"]

        approve = client.post(f"{invoices_url}/{invoice['id']}/approve", headers=headers("manager"))
        assert approve.status_code == 409
        assert "error" in approve.get_json()

    def test_validation_error_shape(self, client, headers, invoices_url):
        response = client.post(
            invoices_url,
            json={"description": "x", "category": "materials", "amount": 0},
            headers=headers(),
        )
        assert response.status_code == 400
        assert response.get_json()["details"] == {"field": "amount"}

    def test_update_and_list(self, client, headers, invoices_url):
        invoice = _create_invoice(client, headers, invoices_url)
        patched = client.patch(
            f"{invoices_url}/{invoice['id']}", json={"amount": 1500, "dueDate": "2025-02-01"}, headers=headers()
        )
        assert patched.status_code == 200
        assert patched.get_json()["data"]["dueDate"] == "2025-02-01"

        listing = client.get(f"{invoices_url}?status=pending&search=cement", headers=headers()).get_json()
        assert [inv["id"] for inv in listing["data"]] == [invoice["id"]]
        assert listing["totals"]["pending"] == 1500.0

        tenant_wide = client.get(f"{BASE}/invoices", headers=headers()).get_json()
        assert len(tenant_wide["data"]) == 1


# =============================================================================
# STORAGE
# =============================================================================

class TestStorage:

    def test_upload_bind_list_and_download(self, client, headers, invoices_url):
        upload = client.post(
            "/api/storage/upload-invoice-attachment",
            data={"file": (io.BytesIO(b"%PDF-1.4 demo"), "quote.pdf"), "description": "Supplier quote"},
            headers=headers(),
            content_type="multipart/form-data",
        )
        assert upload.status_code == 201
        payload = upload.get_json()
        assert payload["success"] is True
        file_path = payload["data"]["filePath"]
        assert payload["data"]["quota"]["used"] == len(b"%PDF-1.4 demo")

        invoice = _create_invoice(client, headers, invoices_url, attachments=[file_path])
        assert invoice["attachments"] == [file_path]

        listed = client.get(f"{invoices_url}/{invoice['id']}/attachments", headers=headers()).get_json()["data"]
        assert listed[0]["fileName"] == "quote.pdf"
        assert listed[0]["fileSizeFormatted"] == "13 Bytes"
        assert listed[0]["uploadedBy"]["email"] == "owner@acme.test"

        download = client.get(listed[0]["url"], headers=headers())
        assert download.status_code == 200
        assert download.data == b"%PDF-1.4 demo"

    def test_upload_over_quota_is_413(self, app, client, headers, tenant):
        from projectledger.models import Customer

        with app.app_context():
            db.session.get(Customer, tenant.customer_id).storage_limit_bytes = 5
            db.session.commit()

        response = client.post(
            "/api/storage/upload-invoice-attachment",
            data={"file": (io.BytesIO(b"0123456789"), "big.pdf")},
            headers=headers(),
            content_type="multipart/form-data",
        )
        assert response.status_code == 413
        assert response.get_json()["details"]["quota"]["canUpload"] is False

        quota = client.get("/api/storage/quota", headers=headers()).get_json()["data"]
        assert quota["used"] == 0

    def test_delete_attachment(self, client, headers):
        upload = client.post(
            "/api/storage/upload-invoice-attachment",
            data={"file": (io.BytesIO(b"abc"), "a.txt")},
            headers=headers(),
            content_type="multipart/form-data",
        ).get_json()
        path = upload["data"]["filePath"]

        response = client.delete(
            "/api/storage/delete-invoice-attachment", json={"filePath": path}, headers=headers()
        )
        assert response.status_code == 200
        assert response.get_json()["data"]["quota"]["used"] == 0


# =============================================================================
# PURCHASE ORDERS, VENDORS, PROJECTS
# =============================================================================

class TestOtherResources:

    def test_purchase_order_flow(self, client, headers, tenant):
        url = f"{BASE}/projects/{tenant.project_id}/purchase-orders"
        created = client.post(
            url,
            json={
                "description": "Blocks",
                "category": "materials",
                "vendorId": tenant.vendor_id,
                "items": [{"description": "9 inch blocks", "quantity": 1000, "unitPrice": 450}],
            },
            headers=headers("member"),
        )
        assert created.status_code == 201
        po = created.get_json()["data"]
        assert po["totalAmount"] == 450000.0

        approved = client.post(f"{url}/{po['id']}/approve", headers=headers("manager"))
        assert approved.get_json()["data"]["status"] == "approved"

        listing = client.get(url, headers=headers()).get_json()
        assert listing["stats"]["approvedCount"] == 1
        assert listing["stats"]["totalValue"] == 450000.0

    def test_vendor_rating_validation(self, client, headers):
        response = client.post(
            f"{BASE}/vendors", json={"name": "Shaky Ltd", "vendorType": "supplier", "rating": 5.1}, headers=headers()
        )
        assert response.status_code == 400

        ok = client.post(
            f"{BASE}/vendors", json={"name": "Solid Ltd", "vendorType": "supplier", "rating": 5}, headers=headers()
        )
        assert ok.status_code == 201
        assert ok.get_json()["data"]["rating"] == 5.0

    def test_project_budget_after_payment(self, client, headers, tenant, invoices_url):
        budget_url = f"{BASE}/projects/{tenant.project_id}/budget"
        added = client.post(budget_url, json={"category": "materials", "plannedAmount": 200000}, headers=headers())
        assert added.status_code == 201

        invoice = _create_invoice(client, headers, invoices_url)
        client.post(f"{invoices_url}/{invoice['id']}/approve", headers=headers())
        client.post(f"{invoices_url}/{invoice['id']}/mark-as-paid", json={"paymentMethod": "cash"}, headers=headers())

        budget = client.get(budget_url, headers=headers()).get_json()["data"]
        assert budget["items"][0]["actualAmount"] == 100000.0
        assert budget["items"][0]["variance"] == -100000.0
        assert budget["totals"]["remaining"] == 900000.0

        project = client.get(f"{BASE}/projects/{tenant.project_id}", headers=headers()).get_json()["data"]
        assert project["actualSpend"] == 100000.0
        assert project["reconciledSpend"] == 100000.0

        expenses = client.get(f"{BASE}/projects/{tenant.project_id}/expenses", headers=headers()).get_json()
        assert expenses["total"] == 100000.0

    def test_manual_expense_lifecycle(self, client, headers, tenant):
        url = f"{BASE}/projects/{tenant.project_id}/expenses"
        project_url = f"{BASE}/projects/{tenant.project_id}"

        created = client.post(
            url,
            json={
                "category": "labor",
                "amount": 20000,
                "taxAmount": 1500,
                "paymentStatus": "paid",
                "paymentMethod": "cash",
            },
            headers=headers("member"),
        )
        assert created.status_code == 201
        expense = created.get_json()["data"]
        assert expense["invoiceId"] is None
        assert expense["totalAmount"] == 21500.0
        assert client.get(project_url, headers=headers()).get_json()["data"]["actualSpend"] == 21500.0

        patched = client.patch(f"{url}/{expense['id']}", json={"amount": 10000}, headers=headers("member"))
        assert patched.status_code == 200
        assert patched.get_json()["data"]["totalAmount"] == 11500.0
        assert client.get(project_url, headers=headers()).get_json()["data"]["actualSpend"] == 11500.0

        assert client.delete(f"{url}/{expense['id']}", headers=headers("viewer")).status_code == 403
        assert client.delete(f"{url}/{expense['id']}", headers=headers("member")).status_code == 200
        assert client.get(project_url, headers=headers()).get_json()["data"]["actualSpend"] == 0.0

    def test_invoice_expense_cannot_be_edited(self, client, headers, tenant, invoices_url):
        invoice = _create_invoice(client, headers, invoices_url)
        client.post(f"{invoices_url}/{invoice['id']}/approve", headers=headers())
        paid = client.post(
            f"{invoices_url}/{invoice['id']}/mark-as-paid", json={"paymentMethod": "cash"}, headers=headers()
        ).get_json()
        expense_url = f"{BASE}/projects/{tenant.project_id}/expenses/{paid['expense']['id']}"

        assert client.patch(expense_url, json={"amount": 1}, headers=headers()).status_code == 403
        assert client.delete(expense_url, headers=headers()).status_code == 403

    def test_budget_line_update_and_delete(self, client, headers, tenant):
        budget_url = f"{BASE}/projects/{tenant.project_id}/budget"
        item = client.post(
            budget_url, json={"category": "materials", "plannedAmount": 1000}, headers=headers()
        ).get_json()["data"]

        patched = client.patch(f"{budget_url}/{item['id']}", json={"plannedAmount": 2500}, headers=headers())
        assert patched.status_code == 200
        assert patched.get_json()["data"]["plannedAmount"] == 2500.0

        assert client.delete(f"{budget_url}/{item['id']}", headers=headers()).status_code == 200
        assert client.get(budget_url, headers=headers()).get_json()["data"]["items"] == []
        assert client.delete(f"{budget_url}/{item['id']}", headers=headers()).status_code == 404

    def test_project_update_is_owner_only(self, client, headers, tenant):
        url = f"{BASE}/projects/{tenant.project_id}"
        assert client.patch(url, json={"name": "Renamed"}, headers=headers("manager")).status_code == 403

        updated = client.patch(url, json={"name": "Renamed", "totalBudget": 2000000}, headers=headers("owner"))
        assert updated.status_code == 200
        assert updated.get_json()["data"]["remainingBudget"] == 2000000.0
