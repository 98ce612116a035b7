"""
projectledger/errors.py

Domain error taxonomy and the JSON error handlers that render it.

Services raise these; routes never build error responses by hand.
Every error renders as:

    {"error": "<message>", "details": {...}}   (details optional)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .extensions import db

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """Missing or invalid input."""

    status_code = 400


class NotFoundError(LedgerError):
    status_code = 404


class ForbiddenError(LedgerError):
    """The operation is never allowed for this record (e.g. deleting a paid invoice)."""

    status_code = 403


class InvalidStateError(LedgerError):
    """The requested transition is not allowed from the record's current status."""

    status_code = 409


class QuotaExceededError(LedgerError):
    status_code = 413


def register_error_handlers(app: Flask) -> None:
    """Render domain errors, HTTP errors and unexpected failures as JSON."""

    @app.errorhandler(LedgerError)
    def _ledger_error(err: LedgerError):
        logger.info("%s: %s", err.__class__.__name__, err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        return jsonify({"error": err.description or err.name}), err.code

    @app.errorhandler(Exception)
    def _unexpected_error(err: Exception):
        db.session.rollback()
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500
