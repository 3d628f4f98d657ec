"""Reconciliation service — applies payment facts to the payment store.

Three kinds of fact arrive independently and possibly out of order:
- completed checkout (Stripe webhook)
- manual verification (frontend polls with the session id after redirect)
- usage mark (frontend reports the gated action was performed)

Completion policy, shared by the webhook and manual paths:
- same checkout session already recorded as paid -> merge, keep `used`
- anything else -> replace the record wholesale, `used` reset to False

Every read-modify-write runs under store.lock(uid).
"""

import logging
import secrets
from datetime import datetime, timezone

from paywall.errors import BadRequest, NoValidPayment
from paywall.services.status_service import has_valid_payment

logger = logging.getLogger(__name__)


def _now():
    """UTC timestamp in the `2025-01-01T00:00:00.000Z` form older records use."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_payment_id():
    """Opaque id for one payment occurrence (128 random bits)."""
    return f"payment_{secrets.token_hex(16)}"


def _apply_paid_session(store, uid, session_id, email=None, customer_id=None):
    """Record a paid checkout session for uid. Caller holds store.lock(uid)."""
    current = store.get(uid)

    if current and current.get("paid") and current.get("sessionId") == session_id:
        merged = dict(current)
        merged["paid"] = True
        if customer_id:
            merged["customerId"] = customer_id
        if email and not merged.get("email"):
            merged["email"] = email
        if merged != current:
            store.set(uid, merged)
        logger.info(f"Session {session_id} already recorded for uid {uid}, used={merged.get('used', False)}")
        return merged

    record = {
        "paid": True,
        "used": False,
        "email": email or None,
        "sessionId": session_id,
        "paymentId": new_payment_id(),
        "customerId": customer_id or None,
        "paidAt": _now(),
        "usedAt": None,
    }
    store.set(uid, record)
    logger.info(f"Payment confirmed for uid {uid}, paymentId {record['paymentId']}")
    return record


def apply_completed_payment(store, uid, session_id, email=None, customer_id=None):
    """Apply a completed checkout for uid.

    Returns the stored record, or None when uid is missing (nothing is
    persisted). A completion for a new session re-arms access even if the
    previous payment was already used.
    """
    if not uid:
        logger.warning(f"Completed checkout {session_id} has no uid in metadata, ignoring")
        return None

    with store.lock(uid):
        return _apply_paid_session(store, uid, session_id, email, customer_id)


def apply_manual_verification(store, session_id, uid, fetch_session=None):
    """Verify a checkout session directly with Stripe and record it if paid.

    Returns True when the session is paid and belongs to uid, False
    otherwise (store untouched). Raises BadRequest when an identifier is
    missing and UpstreamVerificationFailure when Stripe can't be reached.
    """
    if not session_id or not uid:
        raise BadRequest("session_id and uid are required")

    if fetch_session is None:
        from paywall.services.stripe_service import retrieve_checkout_session
        fetch_session = retrieve_checkout_session

    session = fetch_session(session_id)

    metadata = session.get("metadata") or {}
    if session.get("payment_status") != "paid" or metadata.get("uid") != uid:
        logger.info(
            f"Manual verification negative for uid {uid}: "
            f"payment_status={session.get('payment_status')}, "
            f"uid_match={metadata.get('uid') == uid}"
        )
        return False

    customer_details = session.get("customer_details") or {}
    with store.lock(uid):
        _apply_paid_session(
            store,
            uid,
            session.get("id") or session_id,
            email=customer_details.get("email"),
            customer_id=session.get("customer"),
        )
    logger.info(f"Payment verified for uid {uid}")
    return True


def apply_usage_mark(store, uid):
    """Consume the current payment for uid.

    Raises BadRequest when uid is missing and NoValidPayment when there is
    no paid record. Marking an already-used record is a no-op; the first
    usedAt is kept.
    """
    if not uid:
        raise BadRequest("uid is required")

    with store.lock(uid):
        record = store.get(uid)
        if not has_valid_payment(record):
            logger.info(f"Usage mark refused for uid {uid}: no valid payment")
            raise NoValidPayment()

        if record.get("used"):
            logger.info(f"Access already marked as used for uid {uid}")
            return record

        record["used"] = True
        record["usedAt"] = _now()
        store.set(uid, record)

    logger.info(f"Access marked as used for uid {uid}, paymentId {record.get('paymentId')}")
    return record
