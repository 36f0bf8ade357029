# Overview: Flask API routes for bills and purchases; parses input and returns JSON responses.

"""
Bills and purchases share one route layout:

    GET    /                     list (status, payment_mode, start_date, end_date, page, limit)
    POST   /                     create
    GET    /<id>                 document with items
    PUT    /<id>                 edit (body: create payload + edit_reason)
    POST   /<id>/cancel          cancel (body: reason)
    GET    /<id>/edit-preview    editability
    POST   /<id>/lock            admin only (body: reason)
    POST   /<id>/unlock          admin only
    GET    /<id>/history         edit history
    GET    /<id>/returnable      returnable quantity per line
    GET    /<id>/returns         completed returns

Engine errors are mapped to JSON by the app-level error handlers.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_context
from ..services import edit_service, return_service, transaction_service
from . import pagination


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")
purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


def _register_document_routes(bp: Blueprint, document_type: str, key: str, create, cancel, get, list_):
    """Attach the shared route layout to a blueprint. `key` is the JSON envelope key."""

    @bp.get("/")
    @require_context
    def list_documents():
        filters = request.args.to_dict()
        documents, total = list_(g.ctx, **filters)
        page = int(filters.get("page") or 1)
        limit = int(filters.get("limit") or 50)
        return jsonify({
            f"{key}s": [doc.to_dict(include_items=False) for doc in documents],
            "pagination": pagination(total, page, limit),
        }), 200

    @bp.post("/")
    @require_context
    def create_document():
        document = create(g.ctx, request.get_json(silent=True) or {})
        return jsonify({key: document.to_dict()}), 201

    @bp.get("/<int:document_id>")
    @require_context
    def get_document(document_id: int):
        document = get(g.ctx, document_id)
        return jsonify({key: document.to_dict()}), 200

    @bp.put("/<int:document_id>")
    @require_context
    def edit_document(document_id: int):
        data = request.get_json(silent=True) or {}
        document = edit_service.edit_transaction(
            g.ctx, document_type, document_id, data, reason=data.get("edit_reason")
        )
        return jsonify({key: document.to_dict()}), 200

    @bp.post("/<int:document_id>/cancel")
    @require_context
    def cancel_document(document_id: int):
        data = request.get_json(silent=True) or {}
        document = cancel(g.ctx, document_id, data.get("reason"))
        return jsonify({key: document.to_dict()}), 200

    @bp.get("/<int:document_id>/edit-preview")
    @require_context
    def edit_preview(document_id: int):
        result = edit_service.preview_editability(g.ctx, document_type, document_id)
        return jsonify(result.to_dict()), 200

    @bp.post("/<int:document_id>/lock")
    @require_context
    def lock(document_id: int):
        data = request.get_json(silent=True) or {}
        document = edit_service.lock_document(g.ctx, document_type, document_id, data.get("reason"))
        return jsonify({key: document.to_dict(include_items=False)}), 200

    @bp.post("/<int:document_id>/unlock")
    @require_context
    def unlock(document_id: int):
        document = edit_service.unlock_document(g.ctx, document_type, document_id)
        return jsonify({key: document.to_dict(include_items=False)}), 200

    @bp.get("/<int:document_id>/history")
    @require_context
    def history(document_id: int):
        records = edit_service.get_edit_history(g.ctx, document_type, document_id)
        return jsonify({"history": [record.to_dict() for record in records]}), 200

    @bp.get("/<int:document_id>/returnable")
    @require_context
    def returnable(document_id: int):
        rows = return_service.get_returnable_quantities(g.ctx, document_type, document_id)
        return jsonify({"items": rows}), 200

    @bp.get("/<int:document_id>/returns")
    @require_context
    def returns(document_id: int):
        documents = return_service.list_returns_for_document(g.ctx, document_type, document_id)
        return jsonify({"returns": [doc.to_dict() for doc in documents]}), 200


_register_document_routes(
    bills_bp,
    "bill",
    "bill",
    create=transaction_service.create_bill,
    cancel=transaction_service.cancel_bill,
    get=transaction_service.get_bill,
    list_=transaction_service.list_bills,
)

_register_document_routes(
    purchases_bp,
    "purchase",
    "purchase",
    create=transaction_service.create_purchase,
    cancel=transaction_service.cancel_purchase,
    get=transaction_service.get_purchase,
    list_=transaction_service.list_purchases,
)
