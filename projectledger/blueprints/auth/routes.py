"""
Authentication Routes

Provides:
- POST /api/auth/login  -> {token, user}
- GET  /api/auth/me

Rules:
- Only active users may log in.
- Credentials validated via password hash.
- The token is sent back on every call as `Authorization: Bearer <token>`.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...errors import ValidationError
from ...models import User
from ...security import issue_token

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Exchange email + password for a bearer token."""
    data = request.get_json(silent=True) or {}
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")

    if not email or not password:
        raise ValidationError("email and password are required")

    user = User.query.filter_by(email=email).first()

    if not user or not user.check_password(password):
        logger.info("Failed login for %s", email)
        return jsonify({"error": "Invalid credentials"}), 401

    if not user.is_active:
        return jsonify({"error": "Account is disabled"}), 403

    return jsonify({"token": issue_token(user), "user": user.to_dict()})


# ============================================================
# CURRENT USER
# ============================================================

@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    data = current_user.to_dict()
    data["customer"] = {"id": current_user.customer.id, "name": current_user.customer.name}
    return jsonify(data)
