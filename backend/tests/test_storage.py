"""
Tests for the blob store and the JSON record store.
"""

import pytest

from althea.core.exceptions import StoreError
from althea.storage import JSONRecordStore, LocalBlobStore
from althea.utils.auth import decode_download_token


class TestLocalBlobStore:
    """Tests for LocalBlobStore."""

    @pytest.mark.asyncio
    async def test_save_load_and_metadata(self, blob_store):
        assert await blob_store.save("u/s/labs.txt", b"hello", metadata={"content_type": "text/plain"})

        assert await blob_store.load("u/s/labs.txt") == b"hello"
        metadata = await blob_store.get_metadata("u/s/labs.txt")
        assert metadata["size"] == 5
        assert metadata["content_type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_list_hides_metadata_sidecars(self, blob_store):
        await blob_store.save("reports/u/a.html", "<p>a</p>", metadata={"k": "v"})
        await blob_store.save("reports/u/b.html", "<p>b</p>")

        assert await blob_store.list("reports/u") == ["reports/u/a.html", "reports/u/b.html"]
        assert await blob_store.list("reports/missing") == []

    @pytest.mark.asyncio
    async def test_path_traversal_is_rejected(self, blob_store):
        assert await blob_store.save("../escape.txt", b"x") is False
        assert await blob_store.load("../../etc/passwd") is None

    @pytest.mark.asyncio
    async def test_delete(self, blob_store):
        await blob_store.save("a.txt", b"x")

        assert await blob_store.delete("a.txt") is True
        assert await blob_store.exists("a.txt") is False

    def test_signed_url_carries_path(self, blob_store):
        url = blob_store.create_signed_url("reports/u/a.html", expires_in=60)

        assert url.startswith("/storage/signed/")
        assert decode_download_token(url.rsplit("/", 1)[-1]) == "reports/u/a.html"


class TestJSONRecordStore:
    """Tests for JSONRecordStore."""

    @pytest.mark.asyncio
    async def test_insert_fills_identity_and_timestamps(self, record_store):
        row = await record_store.insert("things", {"user_id": "u1", "name": "a"})

        assert row["id"]
        assert row["created_at"] and row["updated_at"]
        assert await record_store.get("things", row["id"], "u1") == row

    @pytest.mark.asyncio
    async def test_reads_are_scoped_by_user(self, record_store):
        row = await record_store.insert("things", {"user_id": "u1", "name": "a"})
        await record_store.insert("things", {"user_id": "u2", "name": "b"})

        assert await record_store.get("things", row["id"], "u2") is None
        assert [r["name"] for r in await record_store.select("things", "u1")] == ["a"]
        assert await record_store.update("things", row["id"], "u2", {"name": "x"}) is None
        assert await record_store.delete("things", row["id"], "u2") is False

    @pytest.mark.asyncio
    async def test_descending_order_breaks_ties_by_insertion(self, record_store):
        for name in ("first", "second", "third"):
            await record_store.insert("things", {"user_id": "u1", "name": name, "rank": 1})

        rows = await record_store.select("things", "u1", order_by="rank", descending=True, limit=1)

        assert rows[0]["name"] == "third"

    @pytest.mark.asyncio
    async def test_filters(self, record_store):
        await record_store.insert("things", {"user_id": "u1", "kind": "a"})
        await record_store.insert("things", {"user_id": "u1", "kind": "b"})

        rows = await record_store.select("things", "u1", filters={"kind": "b"})
        assert [r["kind"] for r in rows] == ["b"]

    @pytest.mark.asyncio
    async def test_update_cannot_change_owner(self, record_store):
        row = await record_store.insert("things", {"user_id": "u1", "name": "a"})

        updated = await record_store.update("things", row["id"], "u1", {"user_id": "u2", "name": "b"})

        assert updated["user_id"] == "u1"
        assert updated["name"] == "b"

    @pytest.mark.asyncio
    async def test_upsert_updates_on_conflict(self, record_store):
        keys = ("user_id", "pattern_type")
        first = await record_store.upsert("patterns", [{"user_id": "u1", "pattern_type": "Asthma", "n": 2}], keys)
        second = await record_store.upsert("patterns", [{"user_id": "u1", "pattern_type": "Asthma", "n": 3}], keys)

        assert first[0]["id"] == second[0]["id"]
        rows = await record_store.select("patterns", "u1")
        assert len(rows) == 1
        assert rows[0]["n"] == 3

    @pytest.mark.asyncio
    async def test_upsert_requires_user_in_conflict_target(self, record_store):
        with pytest.raises(StoreError):
            await record_store.upsert("patterns", [{"user_id": "u1", "pattern_type": "x"}], ("pattern_type",))

    @pytest.mark.asyncio
    async def test_delete_where(self, record_store):
        await record_store.insert("things", {"user_id": "u1", "kind": "a"})
        await record_store.insert("things", {"user_id": "u1", "kind": "b"})
        await record_store.insert("things", {"user_id": "u2", "kind": "a"})

        removed = await record_store.delete_where("things", "u1", lambda row: row["kind"] == "a")

        assert removed == 1
        assert len(await record_store.select("things", "u2")) == 1

    @pytest.mark.asyncio
    async def test_corrupt_table_raises(self, tmp_path):
        storage = LocalBlobStore(str(tmp_path / "records"))
        await storage.save("tables/things.json", "{not json")

        with pytest.raises(StoreError):
            await JSONRecordStore(storage).select("things", "u1")
