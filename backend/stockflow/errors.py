# Overview: Domain error taxonomy shared by services and routes.

"""
Every service raises a StockflowError subclass for expected failures. Routes
map them to a fixed JSON shape:

    {"error": "<message>", "details": {...}}, <status_code>

Anything else is an internal error: routes log it with
current_app.logger.exception and answer {"error": "Internal server error"}.
"""

from __future__ import annotations

from flask import jsonify


class StockflowError(Exception):
    """Base class for expected, user-facing failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self):
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return jsonify(body), self.status_code


class ValidationError(StockflowError, ValueError):
    """Bad or missing fields, unknown reason codes, non-positive quantities."""
    status_code = 400


class NotFound(StockflowError):
    """Order, product, variant, purchase or adjustment id does not exist."""
    status_code = 404


class InvalidTransition(StockflowError):
    """Order status edge is not in the transition table."""
    status_code = 400

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Invalid status transition from {from_status} to {to_status}",
            details={"from_status": from_status, "to_status": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class InsufficientStock(StockflowError):
    """Remove/adjust/confirm would take stock below zero."""
    status_code = 400


class ConflictError(StockflowError):
    """409-level conflict (duplicate SKU/slug, concurrent edit)."""
    status_code = 409


class DuplicateReference(ConflictError):
    """Document number collision. Safe to retry."""


class InternalError(StockflowError):
    status_code = 500

    def __init__(self, message: str = "Internal server error", details: dict | None = None):
        super().__init__(message, details)
