# Overview: Flask API routes for item categories.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_permission, require_role
from ..errors import StockroomError, error_response, internal_error_response
from ..models import Category
from ..services import category_service
from ..validation import ModelValidationPolicy, validate_payload


categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)


@categories_bp.get("")
@require_auth
@require_permission("category:read")
def list_categories_route():
    """List categories with item counts. Optional ?search= on name."""
    categories = category_service.list_categories(search=request.args.get("search"))
    return jsonify({"items": categories, "count": len(categories)}), 200


@categories_bp.post("")
@require_auth
@require_role("admin")
def create_category_route():
    try:
        patch = validate_payload(
            model=Category,
            payload=request.get_json(silent=True) or {},
            policy=CATEGORY_POLICY,
            partial=False,
        )
        category = category_service.create_category(patch=patch)
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create category")
        return internal_error_response()

    return jsonify({"category": category.to_dict(item_count=0)}), 201


@categories_bp.get("/<int:category_id>")
@require_auth
@require_permission("category:read")
def get_category_route(category_id: int):
    try:
        category = category_service.get_category(category_id)
    except StockroomError as e:
        return error_response(e)

    return jsonify({"category": category.to_dict(item_count=len(category.items))}), 200


@categories_bp.put("/<int:category_id>")
@require_auth
@require_role("admin")
def update_category_route(category_id: int):
    try:
        patch = validate_payload(
            model=Category,
            payload=request.get_json(silent=True) or {},
            policy=CATEGORY_POLICY,
            partial=True,
        )
        category = category_service.update_category(category_id=category_id, patch=patch)
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update category")
        return internal_error_response()

    return jsonify({"category": category.to_dict(item_count=len(category.items))}), 200


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role("admin")
def delete_category_route(category_id: int):
    """Delete a category; 409 while items still reference it."""
    try:
        summary = category_service.delete_category(category_id=category_id)
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete category")
        return internal_error_response()

    return jsonify({"deleted": summary}), 200
