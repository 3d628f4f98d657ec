"""Processed webhook events (dedup ledger).

Stripe delivers webhooks at least once. Each event id is recorded after
it has been applied; a redelivery of a known id is acknowledged without
touching the payment store, so a late duplicate of
checkout.session.completed cannot reset a consumed payment.
"""

from paywall.extensions import db


class ProcessedStripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    uid = db.Column(db.Text, nullable=True)  # buyer the event applied to, if any
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<ProcessedStripeEvent {self.stripe_event_id} ({self.event_type})>"
