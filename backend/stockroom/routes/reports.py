# Overview: Flask API routes for reports; read-only summaries over inventory and sales.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_permission
from ..errors import StockroomError, error_response, internal_error_response
from ..services import reporting_service
from ..validation import parse_datetime_arg, parse_int_arg


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/low-stock")
@require_auth
@require_permission("report:low-stock")
def low_stock_report_route():
    return jsonify(reporting_service.low_stock_report()), 200


@reports_bp.get("/margins")
@require_auth
@require_permission("report:margins")
def margin_report_route():
    try:
        report = reporting_service.margin_report(
            low_threshold=current_app.config["MARGIN_LOW_THRESHOLD_PCT"],
            high_threshold=current_app.config["MARGIN_HIGH_THRESHOLD_PCT"],
        )
    except StockroomError as e:
        return error_response(e)

    return jsonify(report), 200


@reports_bp.get("/sales")
@require_auth
@require_permission("report:sales")
def sales_report_route():
    """
    Query params: start_date, end_date (ISO-8601, inclusive),
    group_by (day|week|month; default day), inventory_item_id
    """
    try:
        report = reporting_service.sales_report(
            start=parse_datetime_arg(request.args.get("start_date"), "start_date"),
            end=parse_datetime_arg(request.args.get("end_date"), "end_date", end_of_range=True),
            group_by=(request.args.get("group_by") or "day").lower(),
            inventory_item_id=parse_int_arg(request.args.get("inventory_item_id"), "inventory_item_id"),
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build sales report")
        return internal_error_response()

    return jsonify(report), 200
