"""Unit tests for cms_migrator.core.transfer module."""

from __future__ import annotations

import asyncio
import io
from pathlib import Path
from typing import AsyncIterator

import pytest

from cms_migrator.core.paths import Category
from cms_migrator.core.transfer import BlobTransferUnit, FileTransferUnit
from cms_migrator.utils.errors import TransferTimeoutError, TransportError
from cms_migrator.utils.progress import MigrationReporter

from .conftest import InMemoryBlobStore, write_file

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# FileTransferUnit
# ---------------------------------------------------------------------------


class TestFileTransferUnit:
    async def test_uploads_category_with_keys_relative_to_customer(
        self, content_root: Path, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        unit = FileTransferUnit(uat_store, reporter)

        result = await unit.transfer("customer-3", content_root / "3", Category.LABEL)

        assert result.count == 2
        assert result.container == "customer-3"
        assert result.category == Category.LABEL
        assert uat_store.names("customer-3") == ["Label/a.txt", "Label/sub/b.txt"]
        assert uat_store.blob("customer-3", "Label/a.txt")["data"] == b"label-a"

    async def test_stamps_with_compression_false(
        self, content_root: Path, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        unit = FileTransferUnit(uat_store, reporter)

        await unit.transfer("customer-3", content_root / "3", Category.TILE)

        assert uat_store.blob("customer-3", "Tile/t.png")["metadata"] == {"WithCompression": "false"}

    async def test_merges_metadata_fetched_after_upload(
        self, content_root: Path, reporter: MigrationReporter
    ) -> None:
        store = InMemoryBlobStore(upload_metadata={"Owner": "platform"})
        unit = FileTransferUnit(store, reporter)

        await unit.transfer("customer-3", content_root / "3", Category.TILE)

        assert store.blob("customer-3", "Tile/t.png")["metadata"] == {
            "Owner": "platform",
            "WithCompression": "false",
        }

    async def test_missing_category_folder_counts_zero(
        self, content_root: Path, uat_store: InMemoryBlobStore, reporter: MigrationReporter, output: io.StringIO
    ) -> None:
        unit = FileTransferUnit(uat_store, reporter)

        result = await unit.transfer("customer-7", content_root / "007", Category.LABEL)

        assert result.count == 0
        assert uat_store.created == []
        assert output.getvalue() == ""

    async def test_empty_category_folder_creates_no_container(
        self, tmp_path: Path, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        (tmp_path / "5" / "Label" / "empty").mkdir(parents=True)
        unit = FileTransferUnit(uat_store, reporter)

        result = await unit.transfer("customer-5", tmp_path / "5", Category.LABEL)

        assert result.count == 0
        assert "customer-5" not in uat_store.containers

    async def test_reports_begin_and_end(
        self, content_root: Path, uat_store: InMemoryBlobStore, reporter: MigrationReporter, output: io.StringIO
    ) -> None:
        unit = FileTransferUnit(uat_store, reporter)

        await unit.transfer("customer-3", content_root / "3", Category.LABEL)

        text = output.getvalue()
        assert "Begin copy Label from folder" in text
        assert "Processed : 2" in text

    async def test_rerun_overwrites_instead_of_duplicating(
        self, content_root: Path, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        unit = FileTransferUnit(uat_store, reporter)

        await unit.transfer("customer-3", content_root / "3", Category.LABEL)
        first = {name: dict(uat_store.blob("customer-3", name)) for name in uat_store.names("customer-3")}
        await unit.transfer("customer-3", content_root / "3", Category.LABEL)
        second = {name: dict(uat_store.blob("customer-3", name)) for name in uat_store.names("customer-3")}

        assert first == second
        assert uat_store.created == ["customer-3"]

    async def test_failure_keeps_earlier_uploads(
        self, content_root: Path, reporter: MigrationReporter
    ) -> None:
        store = InMemoryBlobStore(fail_upload=lambda container, name: name == "Label/sub/b.txt")
        unit = FileTransferUnit(store, reporter)

        with pytest.raises(TransportError):
            await unit.transfer("customer-3", content_root / "3", Category.LABEL)

        assert store.names("customer-3") == ["Label/a.txt"]

    async def test_object_timeout(self, tmp_path: Path, reporter: MigrationReporter) -> None:
        write_file(tmp_path / "4" / "Label" / "slow.txt")

        class SlowStore(InMemoryBlobStore):
            async def upload_blob(self, container, name, data):  # type: ignore[override]
                await asyncio.sleep(1)

        unit = FileTransferUnit(SlowStore(), reporter, object_timeout=0.01)

        with pytest.raises(TransferTimeoutError) as exc_info:
            await unit.transfer("customer-4", tmp_path / "4", Category.LABEL)

        assert exc_info.value.context["blob"] == "Label/slow.txt"


# ---------------------------------------------------------------------------
# BlobTransferUnit
# ---------------------------------------------------------------------------


class TestBlobTransferUnit:
    async def test_copies_prefix_with_exact_metadata(
        self, live_store: InMemoryBlobStore, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        live_store.add_blob("customer-9", "Label/1.json", b"0123456789", {"a": "1", "b": "2"})
        live_store.add_blob("customer-9", "Tile/1.png", b"tile", {"c": "3"})
        live_store.add_blob("customer-9", "Other/1.txt", b"other")
        unit = BlobTransferUnit(live_store, uat_store, reporter)

        result = await unit.transfer("customer-9", "customer-9", Category.LABEL)

        assert result.count == 1
        assert uat_store.names("customer-9") == ["Label/1.json"]
        copied = uat_store.blob("customer-9", "Label/1.json")
        assert copied["data"] == b"0123456789"
        assert copied["metadata"] == {"a": "1", "b": "2"}

    async def test_no_added_metadata_keys(
        self, live_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        live_store.add_blob("customer-9", "Tile/1.png", b"tile")
        uat = InMemoryBlobStore(upload_metadata={"Stale": "yes"})
        unit = BlobTransferUnit(live_store, uat, reporter)

        await unit.transfer("customer-9", "customer-9", Category.TILE)

        assert uat.blob("customer-9", "Tile/1.png")["metadata"] == {}

    async def test_walks_all_pages(self, uat_store: InMemoryBlobStore, reporter: MigrationReporter) -> None:
        live = InMemoryBlobStore(page_size=2)
        for i in range(5):
            live.add_blob("customer-2", f"Label/{i}.json", str(i).encode())
        unit = BlobTransferUnit(live, uat_store, reporter)

        result = await unit.transfer("customer-2", "customer-2", Category.LABEL)

        assert result.count == 5
        assert sorted(uat_store.uploads) == sorted(("customer-2", f"Label/{i}.json") for i in range(5))
        assert len(uat_store.uploads) == 5
        assert live.blob_tokens == [("customer-2", None), ("customer-2", "2"), ("customer-2", "4")]

    async def test_empty_prefix_creates_no_container(
        self, live_store: InMemoryBlobStore, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        live_store.add_blob("customer-9", "Other/1.txt")
        unit = BlobTransferUnit(live_store, uat_store, reporter)

        result = await unit.transfer("customer-9", "customer-9", Category.TILE)

        assert result.count == 0
        assert uat_store.created == []

    async def test_only_block_blobs_are_copied(
        self, live_store: InMemoryBlobStore, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        live_store.add_blob("customer-9", "Label/block.json", b"b")
        live_store.add_blob("customer-9", "Label/page.vhd", b"p", blob_type="PageBlob")
        live_store.add_blob("customer-9", "Label/append.log", b"a", blob_type="AppendBlob")
        unit = BlobTransferUnit(live_store, uat_store, reporter)

        result = await unit.transfer("customer-9", "customer-9", Category.LABEL)

        assert result.count == 1
        assert uat_store.names("customer-9") == ["Label/block.json"]

    async def test_prefix_without_block_blobs_creates_no_container(
        self, live_store: InMemoryBlobStore, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        live_store.add_blob("customer-9", "Tile/disk.vhd", b"p", blob_type="PageBlob")
        unit = BlobTransferUnit(live_store, uat_store, reporter)

        result = await unit.transfer("customer-9", "customer-9", Category.TILE)

        assert result.count == 0
        assert uat_store.created == []

    async def test_existing_destination_container_is_reused(
        self, live_store: InMemoryBlobStore, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        live_store.add_blob("customer-9", "Label/1.json", b"new", {"v": "2"})
        uat_store.add_blob("customer-9", "Label/1.json", b"old", {"v": "1", "extra": "x"})
        unit = BlobTransferUnit(live_store, uat_store, reporter)

        await unit.transfer("customer-9", "customer-9", Category.LABEL)

        assert uat_store.created == []
        assert uat_store.blob("customer-9", "Label/1.json") == {"data": b"new", "metadata": {"v": "2"}}

    async def test_stream_is_uploaded_not_buffered_by_unit(
        self, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        class StreamingStore(InMemoryBlobStore):
            async def open_read_stream(self, container: str, name: str) -> AsyncIterator[bytes]:
                for chunk in (b"ab", b"cd", b"ef"):
                    yield chunk

        live = StreamingStore()
        live.add_blob("customer-9", "Label/s.bin")
        unit = BlobTransferUnit(live, uat_store, reporter)

        await unit.transfer("customer-9", "customer-9", Category.LABEL)

        assert uat_store.blob("customer-9", "Label/s.bin")["data"] == b"abcdef"
