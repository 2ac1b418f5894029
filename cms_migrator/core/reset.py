"""Clearing the UAT environment before a migration."""

from typing import List, Optional

from cms_migrator.core.database import ContainerInfoDatabase
from cms_migrator.core.pagination import for_each_page
from cms_migrator.core.paths import is_platform_container
from cms_migrator.logging import get_logger
from cms_migrator.storage.base import BlobStore
from cms_migrator.utils.progress import MigrationReporter


class EnvironmentResetter:
    """Deletes customer containers and their database rows in UAT.

    Platform containers (``customer-0``, ``customer-1``) and their rows are
    kept. The two deletions are independent and not atomic with each other.
    """

    def __init__(
        self,
        destination: BlobStore,
        database: ContainerInfoDatabase,
        reporter: Optional[MigrationReporter] = None,
    ) -> None:
        self.destination = destination
        self.database = database
        self.reporter = reporter or MigrationReporter()
        self.logger = get_logger("resetter")

    async def reset_containers(self) -> int:
        """Delete every non-platform container.

        Returns:
            Number of containers deleted
        """
        deleted = 0

        async def delete_page(containers: List[str]) -> None:
            nonlocal deleted
            for container in containers:
                if is_platform_container(container):
                    continue
                if await self.destination.delete_container_if_exists(container):
                    deleted += 1
                    self.reporter.container_deleted(container)
                    self.logger.info("container_deleted", container=container)

        await for_each_page(self.destination.list_containers, delete_page)
        return deleted

    async def reset_database_records(self) -> int:
        """Delete ContainerInfo rows of non-platform customers.

        Returns:
            Number of rows deleted
        """
        return await self.database.delete_non_platform_records()
