"""Status projection — what the frontend sees for a uid.

paid      -> a completed payment has been recorded
used      -> that payment has been consumed
canRecord -> paid and not yet used (the gated action is allowed)
"""


def has_valid_payment(record):
    """True if record is a paid payment record (usage-mark precondition)."""
    return bool(record) and bool(record.get("paid"))


def project_record(record):
    """Project a raw record (or None) to the three public booleans."""
    paid = has_valid_payment(record)
    used = bool(record) and bool(record.get("used"))
    return {
        "paid": paid,
        "used": used,
        "canRecord": paid and not used,
    }


def project(store, uid):
    """Read-only status for uid. An unknown uid is all-false."""
    return project_record(store.get(uid))
