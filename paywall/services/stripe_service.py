"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions (one-time payment)
- Retrieving sessions for manual verification
- Verifying webhook signatures
- Dispatching to event-specific handlers
- Idempotency via stripe_events table
"""

import logging
from urllib.parse import quote

import stripe
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from paywall.errors import UpstreamVerificationFailure
from paywall.extensions import db
from paywall.models.stripe_event import ProcessedStripeEvent
from paywall.services.payment_store import get_payment_store
from paywall.services.reconciliation_service import apply_completed_payment

logger = logging.getLogger(__name__)

_http_clients = {}


def _configure_stripe():
    """Point the Stripe SDK at the configured key, version, timeout and retries."""
    config = current_app.config
    stripe.api_key = config["STRIPE_SECRET_KEY"]
    stripe.api_version = config["STRIPE_API_VERSION"]
    stripe.max_network_retries = config["STRIPE_MAX_NETWORK_RETRIES"]

    timeout = config["STRIPE_API_TIMEOUT"]
    if timeout not in _http_clients:
        _http_clients[timeout] = stripe.RequestsClient(timeout=timeout)
    stripe.default_http_client = _http_clients[timeout]


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_checkout_session(uid, email=None):
    """Create a one-time payment Checkout Session for uid.

    The uid travels in the session metadata; the webhook and manual
    verification read it back from there.

    Returns {"url": ..., "sessionId": ...}.
    Raises stripe.StripeError on API failures.
    """
    _configure_stripe()
    config = current_app.config
    client_url = config["CLIENT_URL"].rstrip("/")

    params = {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": config["CHECKOUT_CURRENCY"],
                    "product_data": {"name": config["CHECKOUT_PRODUCT_NAME"]},
                    "unit_amount": config["CHECKOUT_AMOUNT"],
                },
                "quantity": 1,
            },
        ],
        "success_url": (
            f"{client_url}/?success=1&uid={quote(uid, safe='')}"
            f"&session_id={{CHECKOUT_SESSION_ID}}"
        ),
        "cancel_url": f"{client_url}/?canceled=1",
        "metadata": {"uid": uid},
    }
    if email:
        params["customer_email"] = email

    session = stripe.checkout.Session.create(**params)
    logger.info(f"Checkout session {session.id} created for uid {uid}")
    return {"url": session.url, "sessionId": session.id}


def retrieve_checkout_session(session_id):
    """Fetch a Checkout Session from Stripe.

    Raises UpstreamVerificationFailure; retryable=True for network
    errors, timeouts and rate limiting.
    """
    _configure_stripe()
    try:
        return stripe.checkout.Session.retrieve(session_id)
    except (stripe.APIConnectionError, stripe.RateLimitError) as e:
        logger.error(f"Stripe unreachable retrieving session {session_id}: {e}")
        raise UpstreamVerificationFailure(str(e), retryable=True) from e
    except stripe.StripeError as e:
        logger.error(f"Stripe error retrieving session {session_id}: {e}")
        raise UpstreamVerificationFailure(str(e)) from e


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified Stripe event object.
    Raises stripe.SignatureVerificationError on invalid signature.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: checks stripe_events table before processing.
    If the event was already processed, returns immediately.

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency check ---
    existing = ProcessedStripeEvent.query.filter_by(
        stripe_event_id=event_id
    ).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    logger.info(f"Webhook event received: {event_type} ({event_id})")

    # --- Route to handler ---
    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "payment_intent.succeeded": _log_payment_intent,
        "payment_intent.created": _log_payment_intent,
    }

    uid = None
    handler = handlers.get(event_type)
    if handler:
        try:
            uid = handler(event)
        except Exception as e:
            logger.error(f"Error handling {event_type}: {e}", exc_info=True)
            db.session.rollback()
            return False, str(e)

    # --- Record event for idempotency ---
    try:
        db.session.add(ProcessedStripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            uid=uid,
        ))
        db.session.commit()
    except SQLAlchemyError as e:
        # The fact is already applied; a redelivery is caught by the
        # same-session check in the reconciliation service.
        db.session.rollback()
        logger.error(f"Could not record webhook event {event_id}: {e}")

    return True, "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed.

    Reads uid from metadata and records the payment. Returns the uid.
    """
    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    customer_details = session.get("customer_details") or {}

    uid = metadata.get("uid")
    apply_completed_payment(
        get_payment_store(),
        uid,
        session.get("id"),
        email=customer_details.get("email"),
        customer_id=session.get("customer"),
    )
    return uid


def _log_payment_intent(event):
    """payment_intent.* events are informational only."""
    logger.info(f"{event['type']}: {event['data']['object'].get('id')}")
    return None
