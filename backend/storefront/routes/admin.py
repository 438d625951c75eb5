# Overview: Flask API routes for staff/admin order operations; preparation, pickup readiness, cancel, refund.

"""
Admin Order API Routes

SECURITY:
- Preparation, delay and ready are STAFF or ADMIN
- Confirm, cancel and refund are ADMIN (they touch money)
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth, require_staff
from ..errors import StorefrontError, error_body
from ..models import Order
from ..extensions import db
from ..services import order_service, workflow_service
from .payments import parse_refund_body


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin/orders")


@admin_bp.get("")
@require_auth
@require_staff
def list_all_orders_route():
    """
    List orders, newest first.

    Query params: status (optional), limit (default 100, max 500)
    """
    status = request.args.get("status")
    limit = min(request.args.get("limit", 100, type=int), 500)

    q = db.session.query(Order)
    if status:
        q = q.filter(Order.order_status == status.upper())
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@admin_bp.post("/<int:order_id>/confirm")
@require_auth
@require_admin
def confirm_order_route(order_id: int):
    """Accept the pending transfer (proof required) and confirm the order."""
    try:
        order = workflow_service.confirm_order(order_id, actor=g.current_user)
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to confirm order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/<int:order_id>/start-preparation")
@require_auth
@require_staff
def start_preparation_route(order_id: int):
    """
    Request body: {"estimated_time": "17:30"}  (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.start_preparation(
            order_id,
            actor=g.current_user,
            estimated_time=data.get("estimated_time"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to start preparation for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/<int:order_id>/delay")
@require_auth
@require_staff
def delay_order_route(order_id: int):
    """
    Request body: {"reason": "Oven breakdown", "new_estimated_time": "19:00"}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.mark_delayed(
            order_id,
            data.get("reason"),
            actor=g.current_user,
            new_estimated_time=data.get("new_estimated_time"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delay order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/<int:order_id>/ready")
@require_auth
@require_staff
def ready_order_route(order_id: int):
    """
    Request body: {"pickup_location": "Front counter", "pickup_hours": "18:00-20:00"}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.mark_ready(
            order_id,
            data.get("pickup_location"),
            data.get("pickup_hours"),
            actor=g.current_user,
        )
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark order %s ready", order_id)
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/<int:order_id>/cancel")
@require_auth
@require_admin
def admin_cancel_order_route(order_id: int):
    """
    Cancel a PENDING or CONFIRMED order. PAID orders must be refunded instead.

    Request body: {"reason": "Out of stock"}  (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel(order_id, actor=g.current_user, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/<int:order_id>/refund")
@require_auth
@require_admin
def refund_order_route(order_id: int):
    """
    Refund the order's payment and keep the order row.

    Request body: {"reason": "...", "amount": 150000, "reference": "..."}
    """
    try:
        reason, amount, reference = parse_refund_body(request.get_json(silent=True) or {})
        order = workflow_service.refund_and_keep_order_record(
            order_id, reason, amount, reference, actor=g.current_user,
        )
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
