# Overview: Flask API routes for the batch calendar; current windows and phases.

from flask import Blueprint, current_app, jsonify, request

from ..services.batch_calendar import current_batches, pickup_batch_for
from ..time_utils import parse_iso_datetime, utcnow


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.get("/current")
def current_batches_route():
    """
    Both batch windows around `at` (default now) with their phase, plus the
    batch a checkout at that instant would be picked up in.

    Query params: at (ISO 8601, optional)
    """
    try:
        at = parse_iso_datetime(request.args.get("at")) or utcnow()
    except ValueError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400

    zone = current_app.config["VENUE_TIMEZONE"]
    return jsonify({
        "timezone": zone,
        "batches": current_batches(at, zone),
        "checkout_batch": pickup_batch_for(at, zone).to_dict(),
    }), 200
