"""Unit tests for cms_migrator.core.reset module."""

from __future__ import annotations

import io
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from cms_migrator.core.database import ContainerInfoDatabase
from cms_migrator.core.reset import EnvironmentResetter
from cms_migrator.utils.errors import TransportError
from cms_migrator.utils.progress import MigrationReporter

from .conftest import InMemoryBlobStore

pytestmark = pytest.mark.unit


def _database(rows: Optional[int] = 0) -> AsyncMock:
    database = AsyncMock(spec=ContainerInfoDatabase)
    database.delete_non_platform_records.return_value = rows
    return database


class TestResetContainers:
    async def test_platform_containers_survive(
        self, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        for name in ("customer-0", "customer-1", "customer-2", "customer-10", "assets"):
            uat_store.add_container(name)
        resetter = EnvironmentResetter(uat_store, _database(), reporter)

        deleted = await resetter.reset_containers()

        assert deleted == 3
        assert sorted(uat_store.containers) == ["customer-0", "customer-1"]
        assert sorted(uat_store.deleted) == ["assets", "customer-10", "customer-2"]

    async def test_each_container_deleted_once_across_pages(self, reporter: MigrationReporter) -> None:
        store = InMemoryBlobStore(page_size=2)
        for i in range(2, 7):
            store.add_container(f"customer-{i}")
        resetter = EnvironmentResetter(store, _database(), reporter)

        deleted = await resetter.reset_containers()

        assert deleted == 5
        assert len(store.deleted) == len(set(store.deleted))
        assert store.container_tokens[0] is None

    async def test_reports_deleted_containers(
        self, uat_store: InMemoryBlobStore, reporter: MigrationReporter, output: io.StringIO
    ) -> None:
        uat_store.add_container("customer-5")
        resetter = EnvironmentResetter(uat_store, _database(), reporter)

        await resetter.reset_containers()

        assert "customer-5" in output.getvalue()

    async def test_only_platform_containers_is_a_no_op(
        self, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        uat_store.add_container("customer-0")
        uat_store.add_container("customer-1")
        resetter = EnvironmentResetter(uat_store, _database(), reporter)

        assert await resetter.reset_containers() == 0
        assert uat_store.deleted == []

    async def test_listing_failure_propagates(self, reporter: MigrationReporter) -> None:
        store = InMemoryBlobStore()
        store.list_containers = AsyncMock(side_effect=TransportError("list failed"))  # type: ignore[method-assign]
        resetter = EnvironmentResetter(store, _database(), reporter)

        with pytest.raises(TransportError):
            await resetter.reset_containers()


class TestResetDatabaseRecords:
    async def test_delegates_to_database(
        self, uat_store: InMemoryBlobStore, reporter: MigrationReporter
    ) -> None:
        database = _database(rows=4)
        resetter = EnvironmentResetter(uat_store, database, reporter)

        assert await resetter.reset_database_records() == 4
        database.delete_non_platform_records.assert_awaited_once_with()
