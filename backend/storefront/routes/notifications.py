# Overview: Flask API routes for the in-app notification inbox.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """Newest first. Query params: limit (default 50, max 200)"""
    limit = min(request.args.get("limit", 50, type=int), 200)
    notes = notification_service.list_for_user(g.current_user.id, limit=limit)
    return jsonify({"notifications": [n.to_dict() for n in notes]}), 200
