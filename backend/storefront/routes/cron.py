# Overview: Flask API routes for the maintenance pass; external cron trigger, stats, and admin manual runs.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin, require_auth, require_cron_secret
from ..errors import StorefrontError, error_body
from ..services.maintenance_service import maintenance_stats, run_maintenance_pass, run_single_pass


cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")
admin_maintenance_bp = Blueprint("admin_maintenance", __name__, url_prefix="/api/admin/maintenance")


@cron_bp.post("/maintenance")
@require_cron_secret
def maintenance_route():
    """
    Run reminders, deadline warnings, expiry and pickup reminders once.

    Partial failures still answer 200 with the per-order errors listed; the
    trigger is at-least-once and every pass is idempotent.
    """
    try:
        summary = run_maintenance_pass()
        return jsonify(summary.to_dict()), 200
    except Exception:
        current_app.logger.exception("Maintenance trigger failed")
        return jsonify({"error": "Internal server error"}), 500


@cron_bp.get("/maintenance")
@require_cron_secret
def maintenance_stats_route():
    """What the next pass would pick up, plus order progress counts."""
    try:
        return jsonify(maintenance_stats()), 200
    except Exception:
        current_app.logger.exception("Maintenance stats failed")
        return jsonify({"error": "Internal server error"}), 500


@admin_maintenance_bp.get("/stats")
@require_auth
@require_admin
def admin_stats_route():
    return jsonify(maintenance_stats()), 200


@admin_maintenance_bp.post("/run")
@require_auth
@require_admin
def admin_run_route():
    """
    Manually run one pass.

    Request body: {"pass": "payment_reminders" | "deadline_warnings" |
                   "expired_payments" | "pickup_reminders" | "all"}
    """
    try:
        data = request.get_json(silent=True) or {}
        summary = run_single_pass(data.get("pass") or "all")
        return jsonify(summary.to_dict()), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Manual maintenance run failed")
        return jsonify({"error": "Internal server error"}), 500
