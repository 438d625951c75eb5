# Overview: Flask API routes for payments operations; proof upload and admin reconciliation.

"""
Payment API Routes

Payments are manual bank transfers. The customer uploads proof (the file
itself lives in external storage; only its URL is recorded), an admin marks
the payment PAID or FAILED, and refunds are recorded after they are settled
offline.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StorefrontError, ValidationError, error_body
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")
admin_payments_bp = Blueprint("admin_payments", __name__, url_prefix="/api/admin/payments")


# =============================================================================
# CUSTOMER
# =============================================================================

@payments_bp.post("/<int:payment_id>/proof")
@require_auth
def upload_proof_route(payment_id: int):
    """
    Attach a transfer receipt.

    Request body: {"proof_url": "https://storage.example/receipts/abc.jpg"}
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.attach_proof(payment_id, data.get("proof_url"), actor=g.current_user)
        return jsonify({"payment": payment.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to attach proof to payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@admin_payments_bp.post("/<int:payment_id>/mark-paid")
@require_auth
@require_admin
def mark_paid_route(payment_id: int):
    try:
        payment = payment_service.mark_paid(payment_id, actor=g.current_user)
        return jsonify({"payment": payment.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark payment %s paid", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@admin_payments_bp.post("/<int:payment_id>/mark-failed")
@require_auth
@require_admin
def mark_failed_route(payment_id: int):
    """
    Reject a transfer. Cancels the order if it is still PENDING.

    Request body: {"reason": "Amount does not match"}
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.mark_failed(payment_id, data.get("reason"), actor=g.current_user)
        return jsonify({"payment": payment.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark payment %s failed", payment_id)
        return jsonify({"error": "Internal server error"}), 500


def parse_refund_body(data: dict) -> tuple[str, int, str | None]:
    amount = data.get("amount")
    if amount is None:
        raise ValidationError("amount required")
    return data.get("reason"), amount, data.get("reference")


@admin_payments_bp.post("/<int:payment_id>/refund")
@require_auth
@require_admin
def refund_payment_route(payment_id: int):
    """
    Record an offline refund.

    Request body:
    {
        "reason": "Customer could not attend",
        "amount": 150000,
        "reference": "TRF-2024-0042"  (optional)
    }
    """
    try:
        reason, amount, reference = parse_refund_body(request.get_json(silent=True) or {})
        payment = payment_service.refund(payment_id, reason, amount, reference, actor=g.current_user)
        return jsonify({"payment": payment.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(error_body(e)), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500
