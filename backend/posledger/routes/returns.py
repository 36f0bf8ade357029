# Overview: Flask API routes for sales and purchase returns; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_context
from ..services import return_service
from . import pagination


sales_returns_bp = Blueprint("sales_returns", __name__, url_prefix="/api/sales-returns")
purchase_returns_bp = Blueprint("purchase_returns", __name__, url_prefix="/api/purchase-returns")


def _list_response(key: str, list_):
    filters = request.args.to_dict()
    documents, total = list_(g.ctx, **filters)
    page = int(filters.get("page") or 1)
    limit = int(filters.get("limit") or 50)
    return jsonify({
        key: [doc.to_dict(include_items=False) for doc in documents],
        "pagination": pagination(total, page, limit),
    }), 200


@sales_returns_bp.get("/")
@require_context
def list_sales_returns_route():
    """Filters: bill_id, status, start_date, end_date, page, limit."""
    return _list_response("sales_returns", return_service.list_sales_returns)


@sales_returns_bp.post("/")
@require_context
def create_sales_return_route():
    """
    Create a (partial) sales return.

    Body: {"bill_id": 1, "items": [{"bill_item_id": 3, "quantity": 2}],
           "return_reason": "...", "refund_mode": "cash"}
    """
    document = return_service.create_sales_return(g.ctx, request.get_json(silent=True) or {})
    return jsonify({"sales_return": document.to_dict()}), 201


@sales_returns_bp.get("/<int:return_id>")
@require_context
def get_sales_return_route(return_id: int):
    document = return_service.get_sales_return(g.ctx, return_id)
    return jsonify({"sales_return": document.to_dict()}), 200


@purchase_returns_bp.get("/")
@require_context
def list_purchase_returns_route():
    return _list_response("purchase_returns", return_service.list_purchase_returns)


@purchase_returns_bp.post("/")
@require_context
def create_purchase_return_route():
    """Body: {"purchase_id": 1, "items": [{"purchase_item_id": 3, "quantity": 2}], ...}"""
    document = return_service.create_purchase_return(g.ctx, request.get_json(silent=True) or {})
    return jsonify({"purchase_return": document.to_dict()}), 201


@purchase_returns_bp.get("/<int:return_id>")
@require_context
def get_purchase_return_route(return_id: int):
    document = return_service.get_purchase_return(g.ctx, return_id)
    return jsonify({"purchase_return": document.to_dict()}), 200
