# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_context
from ..errors import ValidationError
from ..services import stock_ledger_service


stock_ledger_bp = Blueprint("stock_ledger", __name__, url_prefix="/api/stock-ledger")


def _int_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


@stock_ledger_bp.get("/")
@require_context
def list_entries_route():
    """Ledger rows in write order. Filters: product_id, reference_type, reference_id, limit."""
    entries = stock_ledger_service.list_ledger_entries(
        tenant_id=g.ctx.tenant_id,
        product_id=_int_arg("product_id"),
        reference_type=request.args.get("reference_type") or None,
        reference_id=_int_arg("reference_id"),
        limit=min(_int_arg("limit", 200), 1000),
    )
    return jsonify({"entries": [entry.to_dict() for entry in entries]}), 200


@stock_ledger_bp.post("/adjustments")
@require_context
def adjust_stock_route():
    """Body: {"product_id": 1, "quantity_change": "-2", "reason": "Damaged"}"""
    data = request.get_json(silent=True) or {}
    if data.get("product_id") is None:
        raise ValidationError("product_id is required")
    try:
        product_id = int(data["product_id"])
    except (TypeError, ValueError):
        raise ValidationError("product_id must be an integer")

    entry = stock_ledger_service.adjust_stock(
        tenant_id=g.ctx.tenant_id,
        product_id=product_id,
        quantity_change=data.get("quantity_change"),
        reason=data.get("reason"),
        actor_id=g.ctx.actor_id,
    )
    return jsonify({"entry": entry.to_dict()}), 201


@stock_ledger_bp.get("/verify")
@require_context
def verify_route():
    report = stock_ledger_service.verify_ledger(
        tenant_id=g.ctx.tenant_id,
        product_id=_int_arg("product_id"),
    )
    return jsonify(report), 200
