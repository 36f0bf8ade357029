# Overview: Blueprint registration and JSON error mapping.

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from ..errors import CommerceError


def pagination(total: int, page: int, limit: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }


def register_blueprints(app):
    from .system import system_bp
    from .transactions import bills_bp, purchases_bp
    from .returns import sales_returns_bp, purchase_returns_bp
    from .stock_ledger import stock_ledger_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(bills_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(sales_returns_bp)
    app.register_blueprint(purchase_returns_bp)
    app.register_blueprint(stock_ledger_bp)


def register_error_handlers(app):
    """Engine errors become {"error", "kind", "details"} with their own status."""

    @app.errorhandler(CommerceError)
    def handle_commerce_error(e):
        if e.status_code >= 500:
            current_app.logger.error("%s: %s", e.kind, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description, "kind": "http_error", "details": {}}), e.code
        current_app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error", "kind": "internal_error", "details": {}}), 500
