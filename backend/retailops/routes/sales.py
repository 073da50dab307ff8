# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes. Authorization is enforced by sales_service."""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import CompensationFailureError, SaleError, ValidationError
from ..services import sales_service
from ..services.permission_service import PermissionDeniedError
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _error_response(e: SaleError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


def _denied_response(e: PermissionDeniedError):
    return jsonify({
        "error": "Permission denied",
        "required_permission": e.code,
        "message": str(e),
    }), 403


def _int_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={"field": name})


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Ring up a sale.

    Body: {"store_id", "items": [{"product_id", "quantity", "unit_price_cents"?}],
           "discount_cents"?, "tax_cents"?, "payment_method"?, "notes"?, "sale_type"?}
    Requires: sales:create
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.create_sale(
            g.current_user,
            store_id=data.get("store_id"),
            items=data.get("items"),
            discount_cents=data.get("discount_cents", 0),
            tax_cents=data.get("tax_cents", 0),
            payment_method=data.get("payment_method", "cash"),
            notes=data.get("notes"),
            sale_type=data.get("sale_type", "retail"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except PermissionDeniedError as e:
        return _denied_response(e)
    except CompensationFailureError as e:
        current_app.logger.critical("Sale creation left stock unreconciled: %s", e.details)
        return _error_response(e)
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sales, newest first.

    Query: status, payment_status, store_id, start, end, page, per_page
    Requires: sales:read
    """
    try:
        result = sales_service.list_sales(
            g.current_user,
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            store_id=_int_arg("store_id"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=_int_arg("page"),
            per_page=_int_arg("per_page"),
        )
        return jsonify(result), 200

    except PermissionDeniedError as e:
        return _denied_response(e)
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get a sale with its lines. Requires: sales:read"""
    try:
        sale = sales_service.get_sale(g.current_user, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except PermissionDeniedError as e:
        return _denied_response(e)
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>")
@require_auth
def update_sale_route(sale_id: int):
    """
    Edit a sale in place. Only fields present in the body are changed.

    Requires: sales:update
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "JSON object body required"}), 400

    try:
        sale = sales_service.update_sale(
            g.current_user,
            sale_id,
            sales_service.SalePatch.from_payload(data),
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except PermissionDeniedError as e:
        return _denied_response(e)
    except CompensationFailureError as e:
        current_app.logger.critical("Sale %s update left stock unreconciled: %s", sale_id, e.details)
        return _error_response(e)
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_auth
def delete_sale_route(sale_id: int):
    """Hard-delete a sale and give back its stock. Requires: sales:delete"""
    try:
        deleted = sales_service.delete_sale(g.current_user, sale_id)
        return jsonify({"deleted": True, "sale": deleted}), 200

    except PermissionDeniedError as e:
        return _denied_response(e)
    except CompensationFailureError as e:
        current_app.logger.critical("Sale %s delete left stock unreconciled: %s", sale_id, e.details)
        return _error_response(e)
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/refund")
@require_auth
def refund_sale_route(sale_id: int):
    """
    Refund a whole sale and restore its stock.

    Body: {"reason"?}
    Requires: sales:refund
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.refund_sale(g.current_user, sale_id, reason=data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200

    except PermissionDeniedError as e:
        return _denied_response(e)
    except CompensationFailureError as e:
        current_app.logger.critical("Sale %s refund left stock unreconciled: %s", sale_id, e.details)
        return _error_response(e)
    except SaleError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "Internal server error"}), 500
