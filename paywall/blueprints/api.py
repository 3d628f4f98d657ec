"""API blueprint — /api/*

JSON endpoints called by the frontend.

Routes:
- GET  /api/health                   — liveness check
- POST /api/create-checkout-session  — create Stripe Checkout Session, return its URL
- GET  /api/verify-payment           — check a session with Stripe (webhook fallback)
- POST /api/mark-used                — consume the current payment after recording
- GET  /api/status                   — paid / used / canRecord for a uid

Errors from the services (PaywallError) are turned into JSON responses by
the handler registered in create_app().
"""

import logging

from flask import Blueprint, jsonify, request

from paywall.errors import BadRequest
from paywall.extensions import limiter
from paywall.services.payment_store import get_payment_store
from paywall.services.reconciliation_service import (
    apply_manual_verification,
    apply_usage_mark,
)
from paywall.services.status_service import project
from paywall.services.stripe_service import create_checkout_session

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _uid_from(source):
    return str(source.get("uid") or "")


@api_bp.route("/health")
def health():
    return jsonify({"ok": True})


# ──────────────────────────────────────────────
# POST /api/create-checkout-session
# ──────────────────────────────────────────────

@api_bp.route("/create-checkout-session", methods=["POST"])
@limiter.limit("20 per minute")
def create_session():
    """Create a Checkout Session for { uid, email? }.

    Returns { url, sessionId }. Stripe failures are logged and reported
    as a generic 500.
    """
    data = _json_body()
    uid = _uid_from(data)
    if not uid:
        raise BadRequest("uid is required")

    email = (data.get("email") or "").strip() or None

    try:
        result = create_checkout_session(uid, email=email)
    except Exception as e:
        logger.error(f"Checkout error for uid {uid}: {e}", exc_info=True)
        return jsonify({"error": "Could not create the payment session"}), 500

    return jsonify(result)


# ──────────────────────────────────────────────
# GET /api/verify-payment
# ──────────────────────────────────────────────

@api_bp.route("/verify-payment")
@limiter.limit("30 per minute")
def verify_payment():
    """Fallback for when the webhook hasn't arrived (or never will).

    The success redirect carries session_id and uid; the session's own
    metadata must name the same uid.
    """
    session_id = request.args.get("session_id") or ""
    uid = _uid_from(request.args)

    verified = apply_manual_verification(get_payment_store(), session_id, uid)
    return jsonify({"paid": verified, "verified": verified})


# ──────────────────────────────────────────────
# POST /api/mark-used
# ──────────────────────────────────────────────

@api_bp.route("/mark-used", methods=["POST"])
def mark_used():
    """Mark the uid's payment as consumed once the recording is done."""
    data = _json_body()
    apply_usage_mark(get_payment_store(), _uid_from(data))
    return jsonify({"success": True, "message": "Access marked as used"})


# ──────────────────────────────────────────────
# GET /api/status
# ──────────────────────────────────────────────

@api_bp.route("/status")
def status():
    uid = _uid_from(request.args)
    if not uid:
        raise BadRequest("uid is required")
    return jsonify(project(get_payment_store(), uid))
