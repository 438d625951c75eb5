# Overview: Flask API routes for customer order operations; checkout, history, cancel, pickup QR.

"""
Customer Order API Routes

Customers see and act on their own orders only; staff see every order.
An order the caller may not see answers 404, never 403.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import OrderNotReady, StorefrontError, error_body
from ..services import order_service, payment_service, pickup_service
from ..services.lifecycle_service import ORDER_READY


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Checkout.

    Request body:
    {
        "items": [{"bundle_id": 1, "quantity": 2}],
        "notes": "no chili"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        items = data.get("items")
        if not isinstance(items, list):
            return jsonify({"error": "items must be a list", "code": "ValidationError"}), 400

        order = order_service.create_order(g.current_user.id, items, notes=data.get("notes"))
        return jsonify({"order": order.to_dict(include_items=True)}), 201

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    orders = order_service.list_orders_for_user(g.current_user.id)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for_actor(order_id, g.current_user)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel an own PENDING order.

    Request body: {"reason": "changed my mind"}  (optional)
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


@orders_bp.get("/<int:order_id>/qr")
@require_auth
def order_qr_route(order_id: int):
    """
    Pickup QR payload for a READY order.

    Returns the token and the verification URL the client encodes as a QR.
    """
    try:
        order = order_service.get_order_for_actor(order_id, g.current_user)
        if order.order_status != ORDER_READY:
            raise OrderNotReady(f"Order {order.order_number} is not ready for pickup yet")

        token = pickup_service.issue(order.id)
        return jsonify({
            "order_id": order.id,
            "order_number": order.order_number,
            "token": token,
            "verification_url": pickup_service.verification_url(token),
            "pickup_window": pickup_service.pickup_window_info(order),
        }), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build QR payload for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/payment-history")
@require_auth
def payment_history_route(order_id: int):
    try:
        entries = payment_service.payment_history(order_id, actor=g.current_user)
        return jsonify({"history": [e.to_dict() for e in entries]}), 200
    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
