"""Error taxonomy for the paywall API.

Every error carries the HTTP status it maps to and a message that is safe
to show to the caller. Provider details stay in the logs.

- BadRequest: a required identifier is missing.
- NoValidPayment: usage-mark attempted without a paid record.
- UpstreamVerificationFailure: Stripe errored, timed out, or the webhook
  signature did not verify.
- PersistenceFailure: the store could not be written. Raised by storage
  backends and swallowed by PaymentStore.save().
"""


class PaywallError(Exception):
    """Base class. Subclasses set status_code and a default public message."""

    status_code = 500
    public_message = "Internal error"

    def __init__(self, message=None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_dict(self):
        return {"error": self.message}


class BadRequest(PaywallError):
    status_code = 400
    public_message = "Missing required identifier"


class NoValidPayment(PaywallError):
    status_code = 403
    public_message = "No valid payment for this uid"


class UpstreamVerificationFailure(PaywallError):
    status_code = 502
    public_message = "Payment verification failed"

    def __init__(self, message=None, retryable=False):
        super().__init__(message)
        self.retryable = retryable
        if retryable:
            self.status_code = 503

    def to_dict(self):
        # Never leak the provider's error text to the caller.
        return {"error": self.public_message, "retryable": self.retryable}


class PersistenceFailure(PaywallError):
    public_message = "Could not persist payment store"
