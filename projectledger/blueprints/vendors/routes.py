"""
projectledger/blueprints/vendors/routes.py

Vendor registry routes (tenant scoped) under /api/developer-dashboard/vendors.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...services import vendors as vendor_service
from ...utils import snake_keys

vendors_bp = Blueprint("vendors", __name__, url_prefix="/api/developer-dashboard")


@vendors_bp.route("/vendors", methods=["GET"])
@login_required
def list_vendors():
    vendors = vendor_service.list_vendors(
        current_user.customer_id,
        status=request.args.get("status"),
        vendor_type=request.args.get("vendorType"),
        search=request.args.get("search"),
    ).all()
    return jsonify({"data": [v.to_dict() for v in vendors]})


@vendors_bp.route("/vendors", methods=["POST"])
@login_required
def create_vendor():
    vendor = vendor_service.create_vendor(
        current_user.customer, current_user, snake_keys(request.get_json(silent=True))
    )
    return jsonify({"data": vendor.to_dict()}), 201


@vendors_bp.route("/vendors/<int:vendor_id>", methods=["GET"])
@login_required
def vendor_detail(vendor_id: int):
    vendor = vendor_service.get_vendor(current_user.customer_id, vendor_id)
    return jsonify({"data": vendor.to_dict()})


@vendors_bp.route("/vendors/<int:vendor_id>", methods=["PATCH", "PUT"])
@login_required
def update_vendor(vendor_id: int):
    vendor = vendor_service.get_vendor(current_user.customer_id, vendor_id)
    vendor = vendor_service.update_vendor(vendor, current_user, snake_keys(request.get_json(silent=True)))
    return jsonify({"data": vendor.to_dict()})


@vendors_bp.route("/vendors/<int:vendor_id>", methods=["DELETE"])
@login_required
def delete_vendor(vendor_id: int):
    vendor = vendor_service.get_vendor(current_user.customer_id, vendor_id)
    vendor_service.delete_vendor(vendor, current_user)
    return jsonify({"success": True, "message": "Vendor deleted"})


@vendors_bp.route("/vendors/<int:vendor_id>/stats", methods=["GET"])
@login_required
def vendor_stats(vendor_id: int):
    vendor = vendor_service.get_vendor(current_user.customer_id, vendor_id)
    return jsonify({"vendor": vendor.to_dict(), "stats": vendor_service.vendor_stats(vendor)})
