"""
Tests for storage backends and transaction support
"""

import pytest
from datetime import datetime, timezone

from horizon_banking.storage import InMemoryStorage, SQLiteStorage


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "horizon_test.db")
    yield backend
    backend.close()


def _doc(record_id, **fields):
    now = datetime.now(timezone.utc).isoformat()
    data = {"id": record_id, "created_at": now, "updated_at": now}
    data.update(fields)
    return data


class TestBasicOperations:

    def test_save_and_load(self, storage):
        storage.save("users", "u1", _doc("u1", email="a@example.com", balance="100.50"))
        loaded = storage.load("users", "u1")
        assert loaded["email"] == "a@example.com"
        assert loaded["balance"] == "100.50"
        assert storage.load("users", "missing") is None

    def test_exists_count_delete(self, storage):
        storage.save("users", "u1", _doc("u1"))
        storage.save("users", "u2", _doc("u2"))

        assert storage.exists("users", "u1")
        assert storage.count("users") == 2
        assert storage.delete("users", "u1")
        assert not storage.delete("users", "u1")
        assert storage.count("users") == 1

    def test_find_matches_every_filter(self, storage):
        storage.save("ledger", "t1", _doc("t1", user_id="u1", status="pending"))
        storage.save("ledger", "t2", _doc("t2", user_id="u1", status="posted"))
        storage.save("ledger", "t3", _doc("t3", user_id="u2", status="pending"))

        assert {r["id"] for r in storage.find("ledger", {"user_id": "u1"})} == {"t1", "t2"}
        assert [r["id"] for r in storage.find("ledger", {"user_id": "u1", "status": "pending"})] == ["t1"]

    def test_clear_table(self, storage):
        storage.save("outbox", "m1", _doc("m1"))
        storage.clear_table("outbox")
        assert storage.load_all("outbox") == []

    def test_loaded_documents_are_copies(self, storage):
        storage.save("users", "u1", _doc("u1", recurring=[]))
        loaded = storage.load("users", "u1")
        loaded["recurring"].append({"id": "r1"})
        assert storage.load("users", "u1")["recurring"] == []


class TestVersionedSave:
    """Optimistic compare-and-set on the version field"""

    def test_save_if_version_succeeds_on_match(self, storage):
        storage.save("users", "u1", _doc("u1", version=0, balance="10"))
        assert storage.save_if_version("users", "u1", _doc("u1", version=1, balance="20"), 0)
        assert storage.load("users", "u1")["balance"] == "20"

    def test_save_if_version_rejects_stale_write(self, storage):
        storage.save("users", "u1", _doc("u1", version=3, balance="10"))
        assert not storage.save_if_version("users", "u1", _doc("u1", version=3, balance="99"), 2)
        assert storage.load("users", "u1")["balance"] == "10"

    def test_missing_version_counts_as_zero(self, storage):
        storage.save("users", "u1", _doc("u1"))
        assert storage.save_if_version("users", "u1", _doc("u1", version=1), 0)

    def test_save_if_version_on_missing_record(self, storage):
        assert not storage.save_if_version("users", "ghost", _doc("ghost", version=1), 0)


class TestAtomic:

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("users", "u1", _doc("u1"))
            storage.save("ledger", "t1", _doc("t1"))
        assert storage.exists("users", "u1")
        assert storage.exists("ledger", "t1")

    def test_rollback_discards_every_write(self, storage):
        storage.save("users", "u1", _doc("u1", balance="100"))

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("users", "u1", _doc("u1", balance="0"))
                storage.save("ledger", "t1", _doc("t1"))
                raise RuntimeError("boom")

        assert storage.load("users", "u1")["balance"] == "100"
        assert not storage.exists("ledger", "t1")

    def test_nested_blocks_join_outer(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("users", "u1", _doc("u1"))
                raise RuntimeError("outer failure")

        assert not storage.exists("users", "u1")

    def test_usable_after_rollback(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh_table", "x", _doc("x"))
                raise RuntimeError("boom")

        storage.save("fresh_table", "y", _doc("y"))
        assert storage.exists("fresh_table", "y")
        assert not storage.exists("fresh_table", "x")


class TestSQLitePersistence:

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        storage = SQLiteStorage(path)
        storage.save("users", "u1", _doc("u1", email="keep@example.com"))
        storage.close()

        reopened = SQLiteStorage(path)
        try:
            assert reopened.load("users", "u1")["email"] == "keep@example.com"
        finally:
            reopened.close()
