"""
projectledger/blueprints/purchase_orders/routes.py

Purchase order routes under /api/developer-dashboard/projects/<pid>/purchase-orders.

Workflow actions:
- submit  (draft -> pending)
- approve / reject (pending -> approved | rejected), owner/manager only
- close   (approved -> closed), owner/manager only
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...errors import ValidationError
from ...security import approver_required, load_project
from ...services import purchase_orders as po_service
from ...utils import parse_optional_int, snake_keys

purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/developer-dashboard")

PO_URL = "/projects/<int:project_id>/purchase-orders"


def _body() -> dict:
    return snake_keys(request.get_json(silent=True))


def _load(project_id: int, po_id: int):
    project = load_project(project_id)
    return po_service.get_purchase_order(project, po_id)


# ---------------------------------------------------------------------
# List / detail
# ---------------------------------------------------------------------
@purchase_orders_bp.route(PO_URL, methods=["GET"])
@login_required
def list_purchase_orders(project_id: int):
    project = load_project(project_id)
    orders = po_service.list_purchase_orders(
        project.id,
        status=request.args.get("status"),
        vendor_id=parse_optional_int(request.args.get("vendorId")),
    ).all()
    return jsonify(
        {
            "data": [po.to_dict(include_items=False) for po in orders],
            "stats": po_service.purchase_order_stats(orders),
        }
    )


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>", methods=["GET"])
@login_required
def purchase_order_detail(project_id: int, po_id: int):
    po = _load(project_id, po_id)
    return jsonify({"data": po.to_dict()})


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>/invoices", methods=["GET"])
@login_required
def purchase_order_invoices(project_id: int, po_id: int):
    po = _load(project_id, po_id)
    return jsonify({"data": [inv.to_dict() for inv in po_service.linked_invoices(po)]})


# ---------------------------------------------------------------------
# Create / edit / delete
# ---------------------------------------------------------------------
@purchase_orders_bp.route(PO_URL, methods=["POST"])
@login_required
def create_purchase_order(project_id: int):
    project = load_project(project_id)
    data = _body()
    po = po_service.create_purchase_order(
        project,
        current_user,
        description=data.get("description"),
        category=data.get("category"),
        total_amount=data.get("total_amount"),
        currency=data.get("currency"),
        vendor_id=data.get("vendor_id"),
        items=data.get("items"),
        status=data.get("status"),
        expiry_date=data.get("expiry_date"),
        delivery_date=data.get("delivery_date"),
        terms=data.get("terms"),
        notes=data.get("notes"),
    )
    return jsonify({"data": po.to_dict()}), 201


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>", methods=["PATCH", "PUT"])
@login_required
def update_purchase_order(project_id: int, po_id: int):
    po = _load(project_id, po_id)
    data = _body()
    if "status" in data:
        raise ValidationError("Use the submit / approve / reject / close actions to change status")
    po = po_service.update_purchase_order(po, current_user, data)
    return jsonify({"data": po.to_dict()})


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>/items", methods=["POST"])
@login_required
def add_items(project_id: int, po_id: int):
    po = _load(project_id, po_id)
    items = po_service.add_purchase_order_items(po, current_user, _body().get("items"))
    return jsonify({"data": [item.to_dict() for item in items], "purchaseOrder": po.to_dict()}), 201


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>", methods=["DELETE"])
@login_required
def delete_purchase_order(project_id: int, po_id: int):
    po = _load(project_id, po_id)
    po_service.delete_purchase_order(po, current_user)
    return jsonify({"success": True, "message": "Purchase order deleted"})


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------
@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>/submit", methods=["POST"])
@login_required
def submit_purchase_order(project_id: int, po_id: int):
    po = po_service.submit_purchase_order(_load(project_id, po_id), current_user)
    return jsonify({"data": po.to_dict()})


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>/approve", methods=["POST"])
@login_required
@approver_required
def approve_purchase_order(project_id: int, po_id: int):
    po = po_service.approve_purchase_order(_load(project_id, po_id), current_user)
    return jsonify({"data": po.to_dict()})


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>/reject", methods=["POST"])
@login_required
@approver_required
def reject_purchase_order(project_id: int, po_id: int):
    po = po_service.reject_purchase_order(_load(project_id, po_id), current_user, reason=_body().get("reason"))
    return jsonify({"data": po.to_dict()})


@purchase_orders_bp.route(f"{PO_URL}/<int:po_id>/close", methods=["POST"])
@login_required
@approver_required
def close_purchase_order(project_id: int, po_id: int):
    po = po_service.close_purchase_order(_load(project_id, po_id), current_user)
    return jsonify({"data": po.to_dict()})
