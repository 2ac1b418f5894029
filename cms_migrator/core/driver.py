"""Per-customer fan-out of transfer units."""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from cms_migrator.core.pagination import for_each_page
from cms_migrator.core.paths import Category, parse_customer_id, to_destination_container
from cms_migrator.core.transfer import BlobTransferUnit, FileTransferUnit, TransferResult
from cms_migrator.logging import logger
from cms_migrator.storage.base import BlobStore
from cms_migrator.utils.progress import MigrationReporter

CATEGORIES: Sequence[Category] = (Category.LABEL, Category.TILE)


class CustomerMigrationDriver:
    """Migrates customers one at a time, their categories concurrently."""

    def __init__(
        self,
        destination: BlobStore,
        source: Optional[BlobStore] = None,
        reporter: Optional[MigrationReporter] = None,
        max_concurrency: int = 2,
        object_timeout: Optional[float] = None,
        categories: Sequence[Category] = CATEGORIES,
    ) -> None:
        """Initialize driver.

        Args:
            destination: Destination (UAT) blob store
            source: Source (live) blob store, required for container migration
            reporter: Console reporter
            max_concurrency: Transfer units running at once for one customer
            object_timeout: Deadline in seconds for copying one object
            categories: Categories migrated for every customer
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.destination = destination
        self.source = source
        self.reporter = reporter or MigrationReporter()
        self.max_concurrency = max_concurrency
        self.categories = tuple(categories)
        self.logger = logger.get_logger("driver")

        self.file_unit = FileTransferUnit(destination, self.reporter, object_timeout)
        self.blob_unit = (
            BlobTransferUnit(source, destination, self.reporter, object_timeout)
            if source is not None
            else None
        )

    async def migrate_folder(self, source_root: Path) -> List[TransferResult]:
        """Upload every customer folder below ``source_root``.

        Sub-folders whose name is not a customer id are skipped.

        Args:
            source_root: Content root holding one folder per customer

        Returns:
            Results of every transfer unit, in execution order
        """
        results: List[TransferResult] = []
        customer_folders = await asyncio.to_thread(_list_subfolders, source_root)

        for customer_folder in customer_folders:
            customer_id = parse_customer_id(customer_folder.name)
            if customer_id is None:
                self.logger.debug("folder_skipped", folder=str(customer_folder))
                continue

            container = to_destination_container(customer_id)
            logger.bind_context(container=container)
            results.extend(
                await self._run_group(
                    [
                        lambda category=category: self.file_unit.transfer(
                            container, customer_folder, category
                        )
                        for category in self.categories
                    ]
                )
            )

        return results

    async def migrate_containers(self) -> List[TransferResult]:
        """Copy every live container into the same-named UAT container.

        Returns:
            Results of every transfer unit, in execution order

        Raises:
            RuntimeError: If the driver has no source store
        """
        if self.source is None or self.blob_unit is None:
            raise RuntimeError("Container migration requires a source store")

        results: List[TransferResult] = []
        blob_unit = self.blob_unit

        async def migrate_page(containers: List[str]) -> None:
            for container in containers:
                logger.bind_context(container=container)
                results.extend(
                    await self._run_group(
                        [
                            lambda category=category, container=container: blob_unit.transfer(
                                container, container, category
                            )
                            for category in self.categories
                        ]
                    )
                )

        await for_each_page(self.source.list_containers, migrate_page)
        return results

    async def _run_group(
        self,
        units: List[Callable[[], Awaitable[TransferResult]]],
    ) -> List[TransferResult]:
        """Run the transfer units of one customer and wait for all of them.

        At most ``max_concurrency`` units run at once. Every unit finishes,
        successfully or not, before the first failure is re-raised.

        Args:
            units: Factories of the transfer coroutines

        Returns:
            Results in submission order
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(unit: Callable[[], Awaitable[TransferResult]]) -> TransferResult:
            async with semaphore:
                return await unit()

        outcomes = await asyncio.gather(*(run(unit) for unit in units), return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                self.logger.error("transfer_failed", error=str(outcome))
                raise outcome

        return list(outcomes)


def _list_subfolders(root: Path) -> List[Path]:
    return sorted((path for path in root.iterdir() if path.is_dir()), key=lambda p: p.name)
