# backend/stockroom/routes/inventory.py
"""
Inventory management routes.

SECURITY: All routes require authentication.
- View operations require inventory:read
- Item creation requires inventory:create, edits require inventory:update
- Stock changes (add/remove/adjust) require inventory:adjust
- Deleting an item is reserved for the admin role
- The cross-item movement history answers an empty page (not 403) to
  callers without inventory:read

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive; a bare end date covers the whole day.
"""
from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy import Column, Integer, String, Text

from ..decorators import require_auth, require_permission, require_role
from ..errors import StockroomError, error_response, internal_error_response
from ..models import InventoryItem
from ..services import inventory_service
from ..services.authorization_service import evaluate
from ..validation import (
    ModelValidationPolicy,
    RequestSchema,
    ValidationError,
    enforce_rules_item,
    parse_datetime_arg,
    parse_int_arg,
    validate_payload,
    validate_request,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "description",
        "price_cents",
        "cost_cents",
        "quantity",
        "min_stock_level",
        "location",
        "category_id",
    },
    required_on_create={"sku", "name"},
)

ITEM_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "description",
        "price_cents",
        "cost_cents",
        "min_stock_level",
        "location",
        "category_id",
    },
)

STOCK_QUANTITY_SCHEMA = RequestSchema(
    fields=(
        Column("quantity", Integer, nullable=False),
        Column("notes", Text),
    ),
    required=frozenset({"quantity"}),
)

ADJUST_STOCK_SCHEMA = RequestSchema(
    fields=(
        Column("new_quantity", Integer, nullable=False),
        Column("notes", Text),
    ),
    required=frozenset({"new_quantity"}),
)

LOCATION_SCHEMA = RequestSchema(
    fields=(Column("location", String(128)),),
    required=frozenset({"location"}),
)

MIN_LEVEL_SCHEMA = RequestSchema(
    fields=(Column("min_level", Integer, nullable=False),),
    required=frozenset({"min_level"}),
)


def _user_id():
    return g.current_user.id if getattr(g, "current_user", None) else None


def _stock_change_response(item, movement):
    return jsonify({"item": item.to_dict(), "movement": movement.to_dict()}), 200


# =============================================================================
# ITEMS
# =============================================================================

@inventory_bp.get("")
@require_auth
@require_permission("inventory:read")
def list_items_route():
    """
    List items.

    Query params: category_id, search (name/SKU), status (normal|low|out_of_stock)
    """
    try:
        items = inventory_service.list_items(
            category_id=parse_int_arg(request.args.get("category_id"), "category_id"),
            search=request.args.get("search"),
            status=request.args.get("status") or None,
        )
    except StockroomError as e:
        return error_response(e)

    return jsonify({"items": [i.to_dict() for i in items], "count": len(items)}), 200


@inventory_bp.post("")
@require_auth
@require_permission("inventory:create")
def create_item_route():
    try:
        patch = validate_payload(
            model=InventoryItem,
            payload=request.get_json(silent=True) or {},
            policy=ITEM_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_item(patch)
        item = inventory_service.create_item(patch=patch, user_id=_user_id())
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create inventory item")
        return internal_error_response()

    return jsonify({"item": item.to_dict()}), 201


@inventory_bp.get("/<int:item_id>")
@require_auth
@require_permission("inventory:read")
def get_item_route(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
    except StockroomError as e:
        return error_response(e)

    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.put("/<int:item_id>")
@require_auth
@require_permission("inventory:update")
def update_item_route(item_id: int):
    """
    Update item details.

    A price or cost change recomputes the margin and records price history;
    the optional "change_reason" field is stored with that history row.
    """
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        payload = dict(payload)
        change_reason = payload.pop("change_reason", None)
        if change_reason is not None and not isinstance(change_reason, str):
            raise ValidationError("change_reason must be a string")

        patch = validate_payload(
            model=InventoryItem,
            payload=payload,
            policy=ITEM_UPDATE_POLICY,
            partial=True,
        )
        enforce_rules_item(patch)
        item, history = inventory_service.update_item(
            item_id=item_id,
            patch=patch,
            change_reason=change_reason.strip() if change_reason else None,
            user_id=_user_id(),
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update inventory item")
        return internal_error_response()

    return jsonify({
        "item": item.to_dict(),
        "price_history": history.to_dict() if history else None,
    }), 200


@inventory_bp.delete("/<int:item_id>")
@require_auth
@require_role("admin")
def delete_item_route(item_id: int):
    """Delete an item with its movements and price history. Returns what was removed."""
    try:
        summary = inventory_service.delete_item(item_id=item_id)
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete inventory item")
        return internal_error_response()

    return jsonify({"deleted": summary}), 200


# =============================================================================
# STOCK LEDGER
# =============================================================================

@inventory_bp.post("/<int:item_id>/add-stock")
@require_auth
@require_permission("inventory:adjust")
def add_stock_route(item_id: int):
    try:
        patch = validate_request(payload=request.get_json(silent=True) or {}, schema=STOCK_QUANTITY_SCHEMA)
        item, movement = inventory_service.add_stock(
            item_id=item_id,
            quantity=patch["quantity"],
            notes=patch.get("notes") or None,
            user_id=_user_id(),
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add stock")
        return internal_error_response()

    return _stock_change_response(item, movement)


@inventory_bp.post("/<int:item_id>/remove-stock")
@require_auth
@require_permission("inventory:adjust")
def remove_stock_route(item_id: int):
    try:
        patch = validate_request(payload=request.get_json(silent=True) or {}, schema=STOCK_QUANTITY_SCHEMA)
        item, movement = inventory_service.remove_stock(
            item_id=item_id,
            quantity=patch["quantity"],
            notes=patch.get("notes") or None,
            user_id=_user_id(),
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove stock")
        return internal_error_response()

    return _stock_change_response(item, movement)


@inventory_bp.post("/<int:item_id>/adjust-stock")
@require_auth
@require_permission("inventory:adjust")
def adjust_stock_route(item_id: int):
    try:
        patch = validate_request(payload=request.get_json(silent=True) or {}, schema=ADJUST_STOCK_SCHEMA)
        item, movement = inventory_service.adjust_stock(
            item_id=item_id,
            new_quantity=patch["new_quantity"],
            notes=patch.get("notes") or None,
            user_id=_user_id(),
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return internal_error_response()

    return _stock_change_response(item, movement)


@inventory_bp.patch("/<int:item_id>/location")
@require_auth
@require_permission("inventory:update")
def update_location_route(item_id: int):
    """Set the storage location; an empty string or null clears it."""
    try:
        patch = validate_request(payload=request.get_json(silent=True) or {}, schema=LOCATION_SCHEMA)
        item = inventory_service.update_item_location(item_id=item_id, location=patch["location"])
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update item location")
        return internal_error_response()

    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.patch("/<int:item_id>/min-level")
@require_auth
@require_permission("inventory:update")
def update_min_level_route(item_id: int):
    try:
        patch = validate_request(payload=request.get_json(silent=True) or {}, schema=MIN_LEVEL_SCHEMA)
        item = inventory_service.update_min_stock_level(item_id=item_id, min_level=patch["min_level"])
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update minimum stock level")
        return internal_error_response()

    return jsonify({"item": item.to_dict()}), 200


# =============================================================================
# HISTORY
# =============================================================================

@inventory_bp.get("/<int:item_id>/movements")
@require_auth
@require_permission("inventory:read")
def item_movements_route(item_id: int):
    try:
        limit = parse_int_arg(request.args.get("limit"), "limit", default=200, minimum=1)
        movements = inventory_service.list_item_movements(item_id=item_id, limit=min(limit, 1000))
    except StockroomError as e:
        return error_response(e)

    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200


@inventory_bp.get("/<int:item_id>/price-history")
@require_auth
@require_permission("inventory:read")
def price_history_route(item_id: int):
    try:
        history = inventory_service.list_price_history(item_id=item_id)
    except StockroomError as e:
        return error_response(e)

    return jsonify({"items": [h.to_dict() for h in history], "count": len(history)}), 200


@inventory_bp.get("/movements")
@require_auth
def list_movements_route():
    """
    Movement history across items.

    Query params: type, category_id, search, start_date, end_date,
    page, per_page, sort (asc|desc, by date; default desc)
    """
    default_per_page = current_app.config["MOVEMENTS_DEFAULT_PAGE_SIZE"]

    try:
        page = parse_int_arg(request.args.get("page"), "page", default=1, minimum=1)
        per_page = parse_int_arg(request.args.get("per_page"), "per_page", default=default_per_page, minimum=1)

        if not evaluate(g.current_user, permission="inventory:read").authorized:
            return jsonify(inventory_service.empty_movement_page(page=page, per_page=per_page)), 200

        result = inventory_service.list_stock_movements(
            movement_type=request.args.get("type") or None,
            category_id=parse_int_arg(request.args.get("category_id"), "category_id"),
            search=request.args.get("search"),
            start_date=parse_datetime_arg(request.args.get("start_date"), "start_date"),
            end_date=parse_datetime_arg(request.args.get("end_date"), "end_date", end_of_range=True),
            page=page,
            per_page=per_page,
            max_per_page=current_app.config["MOVEMENTS_MAX_PAGE_SIZE"],
            sort=(request.args.get("sort") or "desc").lower(),
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return internal_error_response()

    return jsonify(result), 200


@inventory_bp.get("/price-history")
@require_auth
@require_permission("inventory:read")
def list_price_history_route():
    """
    Price/cost changes across items.

    Query params: category_id, search, start_date, end_date, page, per_page,
    sort (date-asc|date-desc|product-asc|product-desc; default date-desc)
    """
    try:
        result = inventory_service.list_price_history_all(
            category_id=parse_int_arg(request.args.get("category_id"), "category_id"),
            search=request.args.get("search"),
            start_date=parse_datetime_arg(request.args.get("start_date"), "start_date"),
            end_date=parse_datetime_arg(request.args.get("end_date"), "end_date", end_of_range=True),
            page=parse_int_arg(request.args.get("page"), "page", default=1, minimum=1),
            per_page=parse_int_arg(
                request.args.get("per_page"),
                "per_page",
                default=current_app.config["MOVEMENTS_DEFAULT_PAGE_SIZE"],
                minimum=1,
            ),
            max_per_page=current_app.config["MOVEMENTS_MAX_PAGE_SIZE"],
            sort=(request.args.get("sort") or "date-desc").lower(),
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list price history")
        return internal_error_response()

    return jsonify(result), 200
