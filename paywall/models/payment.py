"""Payment record table, used by the SQL store backend.

One row per uid. The record itself is kept whole in a JSON column so any
record shape (including legacy ones carrying `when`) round-trips through
either backend unchanged. `paid` and `used` are mirrored into plain
columns for querying.
"""

from paywall.extensions import db


class PaymentRecordRow(db.Model):
    __tablename__ = "payment_records"

    # uids are caller supplied and unbounded; Text avoids length errors
    uid = db.Column(db.Text, primary_key=True)
    paid = db.Column(db.Boolean, nullable=False, default=False)
    used = db.Column(db.Boolean, nullable=False, default=False)
    data = db.Column(db.JSON, nullable=False, default=dict)

    def to_record(self):
        return dict(self.data or {})

    def update_from_record(self, record):
        self.data = dict(record)
        self.paid = bool(record.get("paid"))
        self.used = bool(record.get("used"))

    def __repr__(self):
        return f"<PaymentRecordRow {self.uid} paid={self.paid} used={self.used}>"
