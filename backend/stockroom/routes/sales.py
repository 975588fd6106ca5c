# Overview: Flask API routes for sales, cancellations and refunds.

"""
Sales API Routes

SECURITY:
- sale:read to list and view sales
- sale:create to record a sale (decrements stock)
- sale:cancel to cancel a sale (restocks remaining units)
- sale:refund to refund units of a sale (restocks refunded units)
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy import Column, Integer, Text

from ..decorators import require_auth, require_permission
from ..errors import StockroomError, error_response, internal_error_response
from ..services import sales_service
from ..validation import (
    RequestSchema,
    ValidationError,
    parse_datetime_arg,
    parse_int_arg,
    validate_line_items,
    validate_request,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_SCHEMA = RequestSchema(
    fields=(
        Column("items"),
        Column("notes", Text),
    ),
    required=frozenset({"items"}),
)

SALE_LINE_SCHEMA = RequestSchema(
    fields=(
        Column("inventory_item_id", Integer, nullable=False),
        Column("quantity", Integer, nullable=False),
        Column("unit_price_cents", Integer),
    ),
    required=frozenset({"inventory_item_id", "quantity"}),
)

REFUND_SCHEMA = RequestSchema(
    fields=(
        Column("items"),
        Column("reason", Text, nullable=False),
    ),
    required=frozenset({"items", "reason"}),
)

REFUND_LINE_SCHEMA = RequestSchema(
    fields=(
        Column("transaction_id", Integer, nullable=False),
        Column("quantity", Integer, nullable=False),
    ),
    required=frozenset({"transaction_id", "quantity"}),
)


def _validate_with_lines(schema: RequestSchema, line_schema: RequestSchema) -> dict:
    payload = request.get_json(silent=True) or {}
    patch = validate_request(payload=payload, schema=schema)
    patch["items"] = validate_line_items(payload.get("items"), schema=line_schema)
    return patch


@sales_bp.get("")
@require_auth
@require_permission("sale:read")
def list_sales_route():
    """
    List sales, newest first.

    Query params: page, per_page, start_date, end_date, inventory_item_id, status
    """
    try:
        result = sales_service.list_sales(
            page=parse_int_arg(request.args.get("page"), "page", default=1, minimum=1),
            per_page=parse_int_arg(request.args.get("per_page"), "per_page", default=20, minimum=1),
            start_date=parse_datetime_arg(request.args.get("start_date"), "start_date"),
            end_date=parse_datetime_arg(request.args.get("end_date"), "end_date", end_of_range=True),
            inventory_item_id=parse_int_arg(request.args.get("inventory_item_id"), "inventory_item_id"),
            status=request.args.get("status") or None,
        )
    except StockroomError as e:
        return error_response(e)

    return jsonify(result), 200


@sales_bp.post("")
@require_auth
@require_permission("sale:create")
def create_sale_route():
    """
    Record a sale.

    Request body:
    {
        "items": [{"inventory_item_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "notes": "Walk-in"  (optional)
    }
    unit_price_cents defaults to the item's current price.
    """
    try:
        patch = _validate_with_lines(SALE_SCHEMA, SALE_LINE_SCHEMA)
        sale = sales_service.create_sale(
            items=patch["items"],
            notes=patch.get("notes") or None,
            user_id=g.current_user.id,
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return internal_error_response()

    return jsonify({"sale": sales_service.sale_to_dict(sale)}), 201


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("sale:read")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except StockroomError as e:
        return error_response(e)

    return jsonify({"sale": sales_service.sale_to_dict(sale)}), 200


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_permission("sale:cancel")
def cancel_sale_route(sale_id: int):
    """
    Cancel a sale and restock its remaining units.

    Returns:
        200: cancelled
        400: already cancelled
        404: sale not found
    """
    try:
        sale = sales_service.cancel_sale(sale_id=sale_id, user_id=g.current_user.id)
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return internal_error_response()

    return jsonify({"sale": sales_service.sale_to_dict(sale)}), 200


@sales_bp.post("/<int:sale_id>/refund")
@require_auth
@require_permission("sale:refund")
def refund_sale_route(sale_id: int):
    """
    Refund units from a sale.

    Request body:
    {
        "items": [{"transaction_id": 7, "quantity": 1}],
        "reason": "Damaged on arrival"
    }
    """
    try:
        patch = _validate_with_lines(REFUND_SCHEMA, REFUND_LINE_SCHEMA)
        if not patch.get("reason"):
            raise ValidationError("reason cannot be blank")
        sale, refund = sales_service.refund_sale(
            sale_id=sale_id,
            items=patch["items"],
            reason=patch["reason"],
            user_id=g.current_user.id,
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return internal_error_response()

    return jsonify({
        "sale": sales_service.sale_to_dict(sale),
        "refund": refund.to_dict(),
        "refund_amount_cents": refund.refund_amount_cents,
    }), 200
