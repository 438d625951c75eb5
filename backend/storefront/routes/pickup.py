# Overview: Flask API routes for pickup verification; QR scan preview and redemption.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth, require_staff
from ..errors import StorefrontError, error_body
from ..services import pickup_service


pickup_bp = Blueprint("pickup", __name__, url_prefix="/api/pickup")


@pickup_bp.get("/verify/<token>")
@require_auth
@require_staff
def preview_pickup_route(token: str):
    """Show the order behind a scanned token without redeeming it."""
    try:
        order = pickup_service.lookup(token)
        return jsonify({
            "order": order.to_dict(include_items=True),
            "pickup_window": pickup_service.pickup_window_info(order),
        }), 200
    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status


@pickup_bp.post("/verify/<token>")
@require_auth
@require_staff
def redeem_pickup_route(token: str):
    """
    Hand the order over: READY -> COMPLETED, NOT_PICKED_UP -> PICKED_UP.

    A second scan of the same token answers 409 AlreadyRedeemed.
    """
    try:
        order = pickup_service.verify(token, actor=g.current_user)
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Pickup verification failed")
        return jsonify({"error": "Internal server error"}), 500
