"""Tests for the payment store and its persistence backends.

Covers:
- Loading a missing / corrupt / wrongly-shaped JSON file (empty mapping)
- save -> load round trip through the JSON file
- Atomic rewrite (no temp files left behind, human-readable output)
- Failed writes are logged and swallowed, memory stays authoritative
- get() hands out copies
- Per-uid lock entries are released after use
- SQL backend round trip (full, legacy and partial records, long uids)
"""

import json
import logging
import os

import pytest

from paywall import create_app
from paywall.extensions import db
from paywall.models.payment import PaymentRecordRow
from paywall.services.payment_store import (
    JsonFileBackend,
    PaymentStore,
    SqlBackend,
    build_payment_store,
)


def _record(n, used=False):
    return {
        "paid": True,
        "used": used,
        "email": f"buyer{n}@example.com",
        "sessionId": f"cs_test_{n}",
        "paymentId": f"payment_{n:032x}",
        "customerId": f"cus_{n}",
        "paidAt": "2026-10-01T12:00:00+00:00",
        "usedAt": "2026-10-01T12:30:00+00:00" if used else None,
    }


class TestJsonFileLoad:
    """Corrupt state is treated as no state."""

    def test_missing_file_is_empty(self, store_path):
        assert JsonFileBackend(str(store_path)).load() == {}

    def test_invalid_json_is_empty(self, store_path, caplog):
        store_path.write_text("{not json", encoding="utf-8")
        with caplog.at_level(logging.WARNING):
            assert JsonFileBackend(str(store_path)).load() == {}
        assert "unreadable" in caplog.text

    def test_non_object_top_level_is_empty(self, store_path):
        store_path.write_text("[1, 2, 3]", encoding="utf-8")
        assert JsonFileBackend(str(store_path)).load() == {}

    def test_non_object_records_are_dropped(self, store_path):
        store_path.write_text(
            json.dumps({"good": _record(1), "bad": "oops"}), encoding="utf-8"
        )
        assert JsonFileBackend(str(store_path)).load() == {"good": _record(1)}

    def test_legacy_records_load_unchanged(self, store_path):
        """Records from the manual path of the old server have `when`, no `used`."""
        legacy = {"paid": True, "sessionId": "cs_old", "customerId": None,
                  "when": "2025-01-01T00:00:00.000Z"}
        store_path.write_text(json.dumps({"u": legacy}), encoding="utf-8")
        assert PaymentStore(JsonFileBackend(str(store_path))).get("u") == legacy


class TestJsonFileSave:
    """Whole-file rewrites."""

    def test_round_trip(self, store_path):
        mapping = {f"user-{n}": _record(n, used=n % 2 == 0) for n in range(25)}
        mapping["ünïcode uid / with spaces"] = _record(99)

        backend = JsonFileBackend(str(store_path))
        backend.save(mapping)

        assert backend.load() == mapping

    def test_store_reloads_what_it_wrote(self, store_path):
        store = PaymentStore(JsonFileBackend(str(store_path)))
        store.set("user-1", _record(1))
        store.set("user-2", _record(2, used=True))

        reloaded = PaymentStore(JsonFileBackend(str(store_path)))
        assert reloaded.snapshot() == store.snapshot()
        assert len(reloaded) == 2
        assert "user-2" in reloaded

    def test_output_is_indented_json(self, store_path):
        JsonFileBackend(str(store_path)).save({"user-1": _record(1)})
        text = store_path.read_text(encoding="utf-8")
        assert text.startswith("{\n  ")
        assert json.loads(text)["user-1"]["paid"] is True

    def test_no_temp_files_left(self, store_path):
        backend = JsonFileBackend(str(store_path))
        for n in range(5):
            backend.save({"user": _record(n)})
        assert os.listdir(store_path.parent) == ["payments.json"]

    def test_creates_missing_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "payments.json"
        JsonFileBackend(str(path)).save({"user-1": _record(1)})
        assert path.exists()


class TestSaveFailure:
    """A failed flush never reaches the caller."""

    def test_set_survives_write_failure(self, tmp_path, caplog):
        # A directory where the file should be makes os.replace fail.
        path = tmp_path / "payments.json"
        path.mkdir()
        store = PaymentStore(JsonFileBackend(str(path)))

        with caplog.at_level(logging.ERROR):
            ok = store.set("user-1", _record(1))

        assert ok is False
        assert store.get("user-1") == _record(1)
        assert "not persisted" in caplog.text

    def test_save_returns_true_on_success(self, file_store):
        assert file_store.set("user-1", _record(1)) is True
        assert file_store.save() is True


class TestStoreAccessors:
    """In-memory accessors."""

    def test_get_unknown_uid_is_none(self, file_store):
        assert file_store.get("nobody") is None

    def test_get_returns_a_copy(self, file_store):
        file_store.set("user-1", _record(1))
        record = file_store.get("user-1")
        record["used"] = True
        assert file_store.get("user-1")["used"] is False

    def test_set_stores_a_copy(self, file_store):
        record = _record(1)
        file_store.set("user-1", record)
        record["paid"] = False
        assert file_store.get("user-1")["paid"] is True

    def test_lock_is_per_uid(self, file_store):
        with file_store.lock("a"):
            # A different uid must not block.
            with file_store.lock("b"):
                assert len(file_store._key_locks) == 2

    def test_lock_entries_are_released(self, file_store):
        with file_store.lock("a"):
            pass
        assert file_store._key_locks == {}

    def test_lock_entry_released_on_error(self, file_store):
        with pytest.raises(ValueError):
            with file_store.lock("a"):
                raise ValueError("boom")
        assert file_store._key_locks == {}


class TestBuildStore:
    """Backend selection from config."""

    def test_default_is_json_file(self, app, store_path):
        store = app.extensions["payment_store"]
        assert isinstance(store.backend, JsonFileBackend)
        assert store.backend.path == str(store_path)

    def test_unknown_backend_raises(self, app):
        app.config["PAYMENT_STORE_BACKEND"] = "redis"
        with pytest.raises(RuntimeError, match="redis"):
            build_payment_store(app)


class TestSqlBackend:
    """payment_records table backend."""

    def test_round_trip(self):
        sql_app = create_app("testing", overrides={"PAYMENT_STORE_BACKEND": "sql"})
        try:
            store = sql_app.extensions["payment_store"]
            assert isinstance(store.backend, SqlBackend)
            assert len(store) == 0

            store.set("user-1", _record(1))
            store.set("user-2", _record(2, used=True))
            store.set("user-1", _record(3))  # overwrite

            reloaded = PaymentStore(SqlBackend(sql_app))
            assert reloaded.snapshot() == {
                "user-1": _record(3),
                "user-2": _record(2, used=True),
            }
        finally:
            with sql_app.app_context():
                db.drop_all()

    def test_legacy_and_partial_records_round_trip(self):
        sql_app = create_app("testing", overrides={"PAYMENT_STORE_BACKEND": "sql"})
        legacy = {"paid": True, "sessionId": "cs_old", "customerId": None,
                  "when": "2025-01-01T00:00:00.000Z"}
        partial = {"paid": False}
        try:
            store = sql_app.extensions["payment_store"]
            store.set("legacy", legacy)
            store.set("partial", partial)

            reloaded = PaymentStore(SqlBackend(sql_app))
            assert reloaded.get("legacy") == legacy
            assert reloaded.get("partial") == partial
        finally:
            with sql_app.app_context():
                db.drop_all()

    def test_long_uid_is_stored(self):
        sql_app = create_app("testing", overrides={"PAYMENT_STORE_BACKEND": "sql"})
        long_uid = "u" * 300
        try:
            assert PaymentRecordRow.__table__.c.uid.type.length is None

            store = sql_app.extensions["payment_store"]
            assert store.set(long_uid, _record(1)) is True
            assert store.set("user-2", _record(2)) is True

            reloaded = PaymentStore(SqlBackend(sql_app))
            assert reloaded.get(long_uid) == _record(1)
            assert len(reloaded) == 2
        finally:
            with sql_app.app_context():
                db.drop_all()
