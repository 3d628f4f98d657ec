"""Payment store — uid -> payment record mapping.

Responsible for:
- Loading the whole mapping once at startup (corrupt state = no state)
- Flushing the whole mapping on every mutation
- Per-uid locks so read-modify-write sequences don't lose updates
- Pluggable persistence: a flat JSON file (default) or a SQL table

A failed flush is logged and swallowed: the in-memory mapping stays
authoritative for the running process and callers are not told about it.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from paywall.errors import PersistenceFailure

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Backends
# ──────────────────────────────────────────────

class JsonFileBackend:
    """Single human-readable JSON file, rewritten atomically on save."""

    def __init__(self, path):
        self.path = os.path.abspath(path)

    def load(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable payment store {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring payment store {self.path}: top level is not an object")
            return {}
        return {
            str(uid): record
            for uid, record in data.items()
            if isinstance(record, dict)
        }

    def save(self, mapping):
        directory = os.path.dirname(self.path)
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=".payments-", suffix=".tmp", dir=directory
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(mapping, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
            raise PersistenceFailure(f"Writing {self.path} failed: {e}") from e

    def __repr__(self):
        return f"<JsonFileBackend {self.path}>"


class SqlBackend:
    """payment_records table through Flask-SQLAlchemy.

    Pushes its own app context so the store can be flushed from worker
    threads as well as from request handlers.
    """

    def __init__(self, app):
        self.app = app

    def load(self):
        from paywall.extensions import db
        from paywall.models.payment import PaymentRecordRow

        with self.app.app_context():
            try:
                rows = db.session.execute(db.select(PaymentRecordRow)).scalars().all()
            except SQLAlchemyError as e:
                logger.warning(f"Ignoring unreadable payment_records table: {e}")
                db.session.rollback()
                return {}
            return {row.uid: row.to_record() for row in rows}

    def save(self, mapping):
        from paywall.extensions import db
        from paywall.models.payment import PaymentRecordRow

        with self.app.app_context():
            try:
                for uid, record in mapping.items():
                    row = db.session.get(PaymentRecordRow, uid)
                    if row is None:
                        row = PaymentRecordRow(uid=uid)
                        db.session.add(row)
                    row.update_from_record(record)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise PersistenceFailure(f"Writing payment_records failed: {e}") from e

    def __repr__(self):
        return "<SqlBackend payment_records>"


# ──────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────

class PaymentStore:
    """In-memory mapping backed by a persistence backend.

    Constructed once per app (see create_app) and handed to the
    reconciliation functions explicitly.
    """

    def __init__(self, backend):
        self.backend = backend
        self._lock = threading.RLock()
        self._key_locks = {}  # uid -> [Lock, holders and waiters]
        self._records = backend.load()
        logger.info(f"Loaded {len(self._records)} payment record(s) from {backend!r}")

    def get(self, uid):
        with self._lock:
            record = self._records.get(uid)
            return dict(record) if record is not None else None

    def set(self, uid, record):
        """Replace the record for uid and flush. Returns the flush result."""
        with self._lock:
            self._records[uid] = dict(record)
            return self.save()

    def save(self):
        """Flush the full mapping. Returns False if the backend failed."""
        with self._lock:
            try:
                self.backend.save(copy.deepcopy(self._records))
            except PersistenceFailure as e:
                logger.error(f"Payment store not persisted: {e}")
                return False
            return True

    def snapshot(self):
        with self._lock:
            return copy.deepcopy(self._records)

    @contextmanager
    def lock(self, uid):
        """Serialize read-modify-write sequences for one uid.

        Entries are reference counted and dropped once no thread holds or
        waits on them, so unknown uids don't accumulate.
        """
        with self._lock:
            entry = self._key_locks.get(uid)
            if entry is None:
                entry = self._key_locks[uid] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[uid]

    def __contains__(self, uid):
        with self._lock:
            return uid in self._records

    def __len__(self):
        with self._lock:
            return len(self._records)


def build_payment_store(app):
    """Create the store for app from PAYMENT_STORE_BACKEND."""
    backend_name = app.config["PAYMENT_STORE_BACKEND"]
    if backend_name == "json":
        backend = JsonFileBackend(app.config["PAYMENT_STORE_PATH"])
    elif backend_name == "sql":
        backend = SqlBackend(app)
    else:
        raise RuntimeError(f"Unknown PAYMENT_STORE_BACKEND: {backend_name!r}")
    return PaymentStore(backend)


def get_payment_store():
    """Store bound to the current app."""
    from flask import current_app

    return current_app.extensions["payment_store"]
