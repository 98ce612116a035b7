"""
projectledger/security.py

Authentication and access control helpers.

Key rules:
- UI is never trusted; all permission checks are server-side.
- Tenant isolation: every project, vendor and attachment lookup is scoped to
  current_user.customer_id. Records of another tenant are reported as 404.
- Roles:
  - owner / manager: may approve, reject and pay.
  - member: may create, edit and delete.
  - viewer: read-only (no mutating requests).

Authentication is a single bearer token (Authorization: Bearer <token>) signed
with SECRET_KEY. It is resolved once per request by Flask-Login's request_loader;
routes then pass current_user explicitly into the service layer.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Optional, Tuple

from flask import current_app, jsonify, request
from flask_login import current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .errors import NotFoundError
from .extensions import db
from .models import Project, User

logger = logging.getLogger(__name__)

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

TOKEN_SALT = "projectledger-auth"


def _forbidden(message: str = "Forbidden") -> Tuple[Any, int]:
    """Consistent 403 JSON body."""
    return jsonify({"error": message}), 403


# ----------------------------------------------------------------------
# Tokens
# ----------------------------------------------------------------------
def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user: User) -> str:
    """Create a signed bearer token for a user."""
    return _serializer().dumps({"uid": user.id})


def user_from_token(token: str) -> Optional[User]:
    """Resolve a bearer token to an active user, or None."""
    try:
        payload = _serializer().loads(token, max_age=current_app.config["AUTH_TOKEN_MAX_AGE"])
    except SignatureExpired:
        logger.info("Rejected expired auth token")
        return None
    except BadSignature:
        return None

    user = db.session.get(User, payload.get("uid"))
    if user is None or not user.is_active:
        return None
    return user


def load_user_from_request(req) -> Optional[User]:
    """Flask-Login request_loader: read `Authorization: Bearer <token>`."""
    header = req.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return user_from_token(token.strip())


# ----------------------------------------------------------------------
# Role checks
# ----------------------------------------------------------------------
def is_owner() -> bool:
    return bool(current_user.is_authenticated and current_user.is_owner())


def can_approve() -> bool:
    return bool(current_user.is_authenticated and current_user.can_approve())


def viewer_readonly_guard() -> Optional[Tuple[Any, int]]:
    """
    Global guard: viewers cannot mutate data.

    Blocks POST/PUT/PATCH/DELETE for authenticated users without edit rights.
    Allow-list: auth.login (not authenticated anyway, but explicit).
    """
    if request.method not in MUTATING_METHODS:
        return None

    if not current_user.is_authenticated:
        return None

    if current_user.can_edit():
        return None

    endpoint = (request.endpoint or "").strip()
    if endpoint in {"auth.login"}:
        return None

    return _forbidden("Read-only access")


def owner_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: tenant owner only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_owner():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def approver_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator: owner/manager.

    For approve / reject / mark-as-paid actions.
    """
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not current_user.is_authenticated:
            return _forbidden()
        if not can_approve():
            return _forbidden("Only owners and managers can perform this action")
        return view_func(*args, **kwargs)

    return wrapper


# ----------------------------------------------------------------------
# Tenant-scoped loaders
# ----------------------------------------------------------------------
def load_project(project_id: int) -> Project:
    """Project of the current user's tenant, or NotFoundError."""
    project = Project.query.filter_by(id=project_id, customer_id=current_user.customer_id).first()
    if project is None:
        raise NotFoundError("Project not found")
    return project
