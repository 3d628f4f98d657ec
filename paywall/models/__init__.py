# Models package — import all models here so create_all() can discover them.

from paywall.models.payment import PaymentRecordRow  # noqa: F401
from paywall.models.stripe_event import ProcessedStripeEvent  # noqa: F401
