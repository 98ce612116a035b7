"""
projectledger/blueprints/invoices/routes.py

Invoice routes under /api/developer-dashboard.

Includes:
- tenant-wide list (GET /invoices)
- per project list / create / edit / delete
- workflow actions: approve, reject, mark-as-paid (alias mark-paid)
- attachment listing

IMPORTANT:
- approve / reject / mark-as-paid are owner/manager only.
- Request bodies are camelCase; services receive snake_case keywords.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...security import approver_required, load_project
from ...services import attachments as attachment_store
from ...services import invoices as invoice_service
from ...utils import snake_keys

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/developer-dashboard")


def _body() -> dict:
    return snake_keys(request.get_json(silent=True))


# ---------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------
@invoices_bp.route("/invoices", methods=["GET"])
@login_required
def list_all_invoices():
    """All invoices across the tenant's projects."""
    invoices = invoice_service.list_customer_invoices(current_user.customer_id).all()
    return jsonify(
        {
            "data": [inv.to_dict() for inv in invoices],
            "totals": invoice_service.invoice_totals(invoices),
        }
    )


@invoices_bp.route("/projects/<int:project_id>/invoices", methods=["GET"])
@login_required
def list_invoices(project_id: int):
    project = load_project(project_id)
    invoices = invoice_service.list_invoices(
        project.id,
        status=request.args.get("status"),
        category=request.args.get("category"),
        search=request.args.get("search"),
    ).all()
    return jsonify(
        {
            "data": [inv.to_dict() for inv in invoices],
            "totals": invoice_service.invoice_totals(invoices),
        }
    )


@invoices_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>", methods=["GET"])
@login_required
def invoice_detail(project_id: int, invoice_id: int):
    project = load_project(project_id)
    invoice = invoice_service.get_invoice(project, invoice_id)
    data = invoice.to_dict()
    data["expense"] = invoice.expense.to_dict() if invoice.expense else None
    return jsonify({"data": data})


# ---------------------------------------------------------------------
# Create / edit / delete
# ---------------------------------------------------------------------
@invoices_bp.route("/projects/<int:project_id>/invoices", methods=["POST"])
@login_required
def create_invoice(project_id: int):
    project = load_project(project_id)
    data = _body()
    invoice = invoice_service.create_invoice(
        project,
        current_user,
        description=data.get("description"),
        category=data.get("category"),
        amount=data.get("amount"),
        currency=data.get("currency"),
        vendor_id=data.get("vendor_id"),
        purchase_order_id=data.get("purchase_order_id"),
        due_date=data.get("due_date"),
        notes=data.get("notes"),
        attachment_paths=data.get("attachments") or data.get("attachment_paths"),
    )
    return jsonify({"data": invoice.to_dict()}), 201


@invoices_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>", methods=["PATCH", "PUT"])
@login_required
def update_invoice(project_id: int, invoice_id: int):
    project = load_project(project_id)
    invoice = invoice_service.get_invoice(project, invoice_id)
    invoice = invoice_service.update_invoice(invoice, current_user, _body())
    return jsonify({"data": invoice.to_dict()})


@invoices_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>", methods=["DELETE"])
@login_required
def delete_invoice(project_id: int, invoice_id: int):
    project = load_project(project_id)
    invoice = invoice_service.get_invoice(project, invoice_id)
    invoice_service.delete_invoice(invoice, current_user)
    return jsonify({"success": True, "message": "Invoice deleted"})


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------
@invoices_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>/approve", methods=["POST"])
@login_required
@approver_required
def approve_invoice(project_id: int, invoice_id: int):
    project = load_project(project_id)
    invoice = invoice_service.get_invoice(project, invoice_id)
    invoice = invoice_service.approve_invoice(invoice, current_user)
    return jsonify({"data": invoice.to_dict()})


@invoices_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>/reject", methods=["POST"])
@login_required
@approver_required
def reject_invoice(project_id: int, invoice_id: int):
    project = load_project(project_id)
    invoice = invoice_service.get_invoice(project, invoice_id)
    invoice = invoice_service.reject_invoice(invoice, current_user, reason=_body().get("reason"))
    return jsonify({"data": invoice.to_dict()})


@invoices_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>/mark-as-paid", methods=["POST"])
@invoices_bp.route(
    "/projects/<int:project_id>/invoices/<int:invoice_id>/mark-paid",
    methods=["POST"],
    endpoint="mark_invoice_paid_alias",
)
@login_required
@approver_required
def mark_invoice_paid(project_id: int, invoice_id: int):
    project = load_project(project_id)
    invoice = invoice_service.get_invoice(project, invoice_id)
    data = _body()
    invoice, expense = invoice_service.mark_invoice_paid(
        invoice,
        current_user,
        payment_method=data.get("payment_method"),
        paid_date=data.get("paid_date"),
        payment_reference=data.get("payment_reference"),
        notes=data.get("notes"),
    )
    return jsonify({"data": invoice.to_dict(), "expense": expense.to_dict()})


# ---------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------
@invoices_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>/attachments", methods=["GET"])
@login_required
def list_attachments(project_id: int, invoice_id: int):
    project = load_project(project_id)
    invoice = invoice_service.get_invoice(project, invoice_id)
    return jsonify({"data": attachment_store.list_for_invoice(invoice)})
