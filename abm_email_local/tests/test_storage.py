import json

import pytest

from abm_email_local.utils.storage import (
    FileEmailStore,
    InMemoryEmailStore,
    SQLiteEmailStore,
    create_email_store,
)

from conftest import make_sequence


def payload(account_index=7, contact_id="RIV-A", **overrides):
    data = {
        "accountIndex": account_index,
        "accountName": "Riverside Health",
        "contactId": contact_id,
        "contactName": "Jane Park",
        "contactTitle": "Chief Learning Officer",
        "emails": make_sequence(),
    }
    data.update(overrides)
    return data


@pytest.fixture(params=["memory", "file", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryEmailStore()
    if request.param == "file":
        return FileEmailStore(str(tmp_path / "saved_emails.json"))
    return SQLiteEmailStore(str(tmp_path / "abm_email.db"))


class TestEmailStore:
    def test_save_assigns_id_and_timestamps(self, store):
        record = store.save(payload())

        assert record["id"]
        assert record["createdAt"] == record["updatedAt"]
        assert record["createdAt"].endswith("Z")
        assert record["emails"] == make_sequence()

    def test_get_returns_full_record(self, store):
        saved = store.save(payload())

        assert store.get(saved["id"]) == saved
        assert store.get("missing") is None

    def test_list_returns_metadata_in_insertion_order(self, store):
        first = store.save(payload(contact_id="RIV-A"))
        second = store.save(payload(contact_id="RIV-B"))

        listed = store.list()

        assert [item["id"] for item in listed] == [first["id"], second["id"]]
        assert "emails" not in listed[0]
        assert listed[0]["emailCount"] == 3

    def test_list_filters_by_account(self, store):
        store.save(payload(account_index=7))
        other = store.save(payload(account_index=12))

        assert [item["id"] for item in store.list(12)] == [other["id"]]
        assert store.list(99) == []

    def test_delete(self, store):
        saved = store.save(payload())

        assert store.delete(saved["id"]) is True
        assert store.get(saved["id"]) is None
        assert store.delete(saved["id"]) is False

    def test_count_and_clear(self, store):
        store.save(payload())
        store.save(payload())

        assert store.count() == 2
        store.clear()
        assert store.count() == 0

    def test_missing_fields_rejected(self, store):
        data = payload()
        del data["contactTitle"]

        with pytest.raises(ValueError):
            store.save(data)

    def test_returned_records_are_copies(self, store):
        saved = store.save(payload())
        saved["emails"].clear()

        assert len(store.get(saved["id"])["emails"]) == 3


class TestPersistence:
    def test_file_store_survives_reopen(self, tmp_path):
        path = tmp_path / "saved_emails.json"
        saved = FileEmailStore(str(path)).save(payload())

        reopened = FileEmailStore(str(path))

        assert reopened.get(saved["id"]) == saved
        snapshot = json.loads(path.read_text(encoding="utf-8"))
        assert [record["id"] for record in snapshot["emails"]] == [saved["id"]]
        assert not path.with_suffix(".json.tmp").exists()

    def test_file_store_accepts_bare_list_snapshot(self, tmp_path):
        path = tmp_path / "legacy.json"
        record = dict(payload(), id="abc", createdAt="2026-01-01T00:00:00Z", updatedAt="2026-01-01T00:00:00Z")
        path.write_text(json.dumps([record]), encoding="utf-8")

        assert FileEmailStore(str(path)).get("abc")["contactName"] == "Jane Park"

    def test_sqlite_store_survives_reopen(self, tmp_path):
        path = tmp_path / "abm_email.db"
        saved = SQLiteEmailStore(str(path)).save(payload())

        assert SQLiteEmailStore(str(path)).get(saved["id"]) == saved


class TestCreateEmailStore:
    def test_backend_selection(self, tmp_path):
        base = {"data_dir": str(tmp_path)}

        assert isinstance(create_email_store(dict(base, storage_backend="memory")), InMemoryEmailStore)
        assert isinstance(create_email_store(dict(base, storage_backend="sqlite")), SQLiteEmailStore)

        file_store = create_email_store(base)
        assert isinstance(file_store, FileEmailStore)
        assert file_store.file_path == tmp_path / "saved_emails.json"

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_email_store({"data_dir": str(tmp_path), "storage_backend": "redis"})
