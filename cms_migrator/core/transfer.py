"""Copying one category of a customer's objects into a destination container."""

import asyncio
import time
from pathlib import Path
from typing import Awaitable, List, Optional, TypeVar

import aiofiles
from pydantic import BaseModel

from cms_migrator.core.pagination import for_each_page
from cms_migrator.core.paths import Category, to_destination_key
from cms_migrator.logging import logger
from cms_migrator.storage.base import BLOCK_BLOB, BlobEntry, BlobStore
from cms_migrator.utils.errors import TransferTimeoutError
from cms_migrator.utils.progress import MigrationReporter

R = TypeVar("R")

WITH_COMPRESSION = "WithCompression"


class TransferResult(BaseModel):
    """Outcome of one transfer unit."""

    source: str
    container: str
    category: Category
    count: int = 0
    duration_ms: float = 0.0


class ObjectTransferUnit:
    """Shared plumbing of the filesystem and blob transfer units."""

    source_kind = ""

    def __init__(
        self,
        destination: BlobStore,
        reporter: Optional[MigrationReporter] = None,
        object_timeout: Optional[float] = None,
    ) -> None:
        """Initialize transfer unit.

        Args:
            destination: Destination (UAT) blob store
            reporter: Console reporter
            object_timeout: Deadline in seconds for copying one object
        """
        self.destination = destination
        self.reporter = reporter or MigrationReporter()
        self.object_timeout = object_timeout
        self.logger = logger.get_logger(type(self).__name__)

    async def _with_deadline(self, operation: Awaitable[R], container: str, name: str) -> R:
        if self.object_timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, self.object_timeout)
        except asyncio.TimeoutError as e:
            raise TransferTimeoutError(
                f"Copying {name} into {container} exceeded {self.object_timeout}s",
                timeout=self.object_timeout,
                context={"container": container, "blob": name},
            ) from e

    def _finish(self, result: TransferResult, started: float) -> TransferResult:
        result.duration_ms = (time.monotonic() - started) * 1000
        self.reporter.transfer_completed(
            result.category.value, self.source_kind, result.source, result.count
        )
        logger.log_transfer(
            result.container,
            result.category.value,
            result.source,
            result.count,
            result.duration_ms,
        )
        return result


class FileTransferUnit(ObjectTransferUnit):
    """Uploads a category sub-folder of a customer folder."""

    source_kind = "folder"

    async def transfer(
        self,
        destination_container: str,
        customer_folder: Path,
        category: Category,
    ) -> TransferResult:
        """Upload every file below ``customer_folder/category``.

        Object keys are relative to the customer folder, so they keep the
        category as their first segment. Uploaded objects get
        ``WithCompression=false`` merged into their metadata.

        Args:
            destination_container: Container receiving the objects
            customer_folder: Folder of one customer
            category: Sub-folder to upload

        Returns:
            Transfer result with the number of uploaded files
        """
        directory = customer_folder / category.value
        result = TransferResult(
            source=str(directory),
            container=destination_container,
            category=category,
        )

        if not directory.is_dir():
            self.logger.debug("category_folder_missing", folder=str(directory))
            return result

        started = time.monotonic()
        self.reporter.transfer_started(category.value, self.source_kind, str(directory))

        file_paths = await asyncio.to_thread(_list_files, directory)
        if file_paths:
            await self.destination.create_container_if_not_exists(destination_container)

        for file_path in file_paths:
            key = to_destination_key(customer_folder, file_path)
            await self._with_deadline(
                self._upload_file(destination_container, file_path, key),
                destination_container,
                key,
            )
            result.count += 1

        return self._finish(result, started)

    async def _upload_file(self, container: str, file_path: Path, key: str) -> None:
        async with aiofiles.open(file_path, "rb") as f:
            content = await f.read()

        await self.destination.upload_blob(container, key, content)

        metadata = await self.destination.get_metadata(container, key)
        metadata[WITH_COMPRESSION] = "false"
        await self.destination.set_metadata(container, key, metadata)

        self.logger.debug("file_uploaded", container=container, blob=key, size_bytes=len(content))


class BlobTransferUnit(ObjectTransferUnit):
    """Copies a category prefix of a live container into a UAT container."""

    source_kind = "container"

    def __init__(
        self,
        source: BlobStore,
        destination: BlobStore,
        reporter: Optional[MigrationReporter] = None,
        object_timeout: Optional[float] = None,
    ) -> None:
        """Initialize transfer unit.

        Args:
            source: Source (live) blob store
            destination: Destination (UAT) blob store
            reporter: Console reporter
            object_timeout: Deadline in seconds for copying one object
        """
        super().__init__(destination, reporter, object_timeout)
        self.source = source

    async def transfer(
        self,
        destination_container: str,
        source_container: str,
        category: Category,
    ) -> TransferResult:
        """Copy every blob named ``category*`` with its metadata.

        Args:
            destination_container: Container receiving the blobs
            source_container: Live container to read from
            category: Blob name prefix to copy

        Returns:
            Transfer result with the number of copied blobs
        """
        result = TransferResult(
            source=source_container,
            container=destination_container,
            category=category,
        )
        started = time.monotonic()
        self.reporter.transfer_started(category.value, self.source_kind, source_container)
        container_ready = False

        async def copy_page(entries: List[BlobEntry]) -> None:
            nonlocal container_ready
            entries = [entry for entry in entries if self._is_block_blob(entry, source_container)]
            if entries and not container_ready:
                await self.destination.create_container_if_not_exists(destination_container)
                container_ready = True

            for entry in entries:
                await self._with_deadline(
                    self._copy_blob(source_container, destination_container, entry),
                    destination_container,
                    entry.name,
                )
                result.count += 1

        await for_each_page(
            lambda token: self.source.list_blobs(
                source_container,
                prefix=category.value,
                include_metadata=True,
                continuation_token=token,
            ),
            copy_page,
        )

        return self._finish(result, started)

    def _is_block_blob(self, entry: BlobEntry, source_container: str) -> bool:
        # Only block blobs are copied
        if entry.blob_type == BLOCK_BLOB:
            return True
        self.logger.warning(
            "blob_skipped",
            container=source_container,
            blob=entry.name,
            blob_type=entry.blob_type,
        )
        return False

    async def _copy_blob(
        self,
        source_container: str,
        destination_container: str,
        entry: BlobEntry,
    ) -> None:
        stream = self.source.open_read_stream(source_container, entry.name)
        await self.destination.upload_blob(destination_container, entry.name, stream)
        await self.destination.set_metadata(destination_container, entry.name, dict(entry.metadata))

        self.logger.debug("blob_copied", container=destination_container, blob=entry.name)


def _list_files(directory: Path) -> List[Path]:
    return sorted(path for path in directory.rglob("*") if path.is_file())
