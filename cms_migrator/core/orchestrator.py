"""Migration orchestrator for the live to UAT content migration."""

import asyncio
import time
from enum import Enum
from pathlib import Path
from typing import Awaitable, List, Optional

from pydantic import BaseModel, Field

from cms_migrator.config import Config
from cms_migrator.core.database import ContainerInfoDatabase
from cms_migrator.core.driver import CustomerMigrationDriver
from cms_migrator.core.reset import EnvironmentResetter
from cms_migrator.core.transfer import TransferResult
from cms_migrator.logging import logger
from cms_migrator.storage.azure_blob import AzureBlobStore
from cms_migrator.storage.base import BlobStore
from cms_migrator.utils.errors import describe_error
from cms_migrator.utils.progress import MigrationReporter


class MigrationState(str, Enum):
    """Orchestrator states."""

    IDLE = "idle"
    RESETTING = "resetting"
    MIGRATING_FILESYSTEM = "migrating_filesystem"
    MIGRATING_CLOUD = "migrating_cloud"
    DONE = "done"
    FAILED = "failed"


class PhaseResult(BaseModel):
    """Transfer results of one migration phase."""

    name: str
    source: str
    results: List[TransferResult] = Field(default_factory=list)

    @property
    def total_objects(self) -> int:
        """Objects transferred in this phase."""
        return sum(result.count for result in self.results)


class MigrationSummary(BaseModel):
    """Outcome of an orchestrator run."""

    state: MigrationState = MigrationState.IDLE
    history: List[MigrationState] = Field(default_factory=list)
    phases: List[PhaseResult] = Field(default_factory=list)
    containers_deleted: int = 0
    records_deleted: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def total_objects(self) -> int:
        """Objects transferred across all phases."""
        return sum(phase.total_objects for phase in self.phases)


class MigrationOrchestrator:
    """Sequences reset, filesystem migration and cloud migration."""

    def __init__(
        self,
        config: Config,
        source: Optional[BlobStore] = None,
        destination: Optional[BlobStore] = None,
        database: Optional[ContainerInfoDatabase] = None,
        reporter: Optional[MigrationReporter] = None,
    ) -> None:
        """Initialize the orchestrator.

        Stores and database not passed in are built from ``config`` and closed
        when the run ends.

        Args:
            config: Migration configuration
            source: Live blob store
            destination: UAT blob store
            database: UAT file storage database
            reporter: Console reporter
        """
        self.config = config
        self.logger = logger.get_logger("orchestrator")
        self.reporter = reporter or MigrationReporter()
        self._owned_stores: List[BlobStore] = []

        self.source = source or self._create_store(
            config.storage.live_connection_string.get_secret_value(), "live"
        )
        self.destination = destination or self._create_store(
            config.storage.uat_connection_string.get_secret_value(), "uat"
        )
        self.database = database or ContainerInfoDatabase(
            config.storage.uat_file_storage_db_connection_string.get_secret_value()
        )

        self.driver = CustomerMigrationDriver(
            self.destination,
            self.source,
            reporter=self.reporter,
            max_concurrency=config.migration.max_concurrency,
            object_timeout=config.migration.object_timeout_seconds,
        )
        self.resetter = EnvironmentResetter(self.destination, self.database, self.reporter)

        self.state = MigrationState.IDLE
        self.summary = MigrationSummary()

    def _create_store(self, connection_string: str, name: str) -> BlobStore:
        store = AzureBlobStore(
            connection_string,
            name,
            page_size=self.config.migration.page_size,
            retry_max_attempts=self.config.migration.retry_max_attempts,
            retry_backoff_factor=self.config.migration.retry_backoff_factor,
        )
        self._owned_stores.append(store)
        return store

    def _transition(self, state: MigrationState) -> None:
        self.logger.info("state_changed", previous=self.state.value, state=state.value)
        self.state = state
        self.summary.state = state
        self.summary.history.append(state)

    async def run(self) -> MigrationSummary:
        """Run every phase.

        Returns:
            Migration summary

        Raises:
            Exception: Whatever aborted the run; ``self.summary`` then holds
                the partial results and the error message
        """
        perform_reset = self.config.migration.perform_reset

        async def phases() -> None:
            if perform_reset:
                await self._reset()
            if self.config.migration.parallel_phases:
                await self._migrate_parallel()
            else:
                for root in self.config.storage.content_roots:
                    self._enter(MigrationState.MIGRATING_FILESYSTEM)
                    await self._migrate_folder(root)
                self._enter(MigrationState.MIGRATING_CLOUD)
                await self._migrate_cloud()

        return await self._execute(phases())

    async def reset(self) -> MigrationSummary:
        """Run only the reset phase.

        Returns:
            Migration summary
        """
        return await self._execute(self._reset())

    async def _execute(self, work: Awaitable[None]) -> MigrationSummary:
        start_time = time.monotonic()
        self.summary = MigrationSummary()
        self.state = MigrationState.IDLE
        logger.log_migration_start(self.config.summary())

        try:
            await work
            self._transition(MigrationState.DONE)
            return self.summary

        except asyncio.CancelledError:
            self.logger.warning("migration_cancelled")
            self.summary.error = "Migration cancelled"
            self._transition(MigrationState.FAILED)
            raise

        except Exception as e:
            logger.log_error(e, describe_error(e))
            self.summary.error = str(e)
            self._transition(MigrationState.FAILED)
            raise

        finally:
            self.summary.duration_seconds = time.monotonic() - start_time
            logger.log_migration_complete(
                self.summary.state.value,
                self.summary.total_objects,
                self.summary.duration_seconds,
                self.summary.error,
            )
            logger.clear_context()
            await self.close()

    def _enter(self, state: MigrationState) -> None:
        if self.state != state:
            self._transition(state)

    async def _reset(self) -> None:
        self._transition(MigrationState.RESETTING)
        self.reporter.phase_started("Reset", "UAT containers and ContainerInfo rows")
        logger.bind_context(phase="reset")
        logger.log_phase("reset", "started")

        self.summary.containers_deleted = await self.resetter.reset_containers()
        self.summary.records_deleted = await self.resetter.reset_database_records()

        detail = (
            f"{self.summary.containers_deleted} containers, "
            f"{self.summary.records_deleted} database rows deleted"
        )
        self.reporter.phase_completed("Reset", detail)
        logger.log_phase(
            "reset",
            "completed",
            containers_deleted=self.summary.containers_deleted,
            records_deleted=self.summary.records_deleted,
        )

    async def _migrate_folder(self, root: Path) -> PhaseResult:
        phase = PhaseResult(name="Filesystem", source=str(root))
        self.summary.phases.append(phase)
        self.reporter.phase_started("Filesystem migration", str(root))
        logger.bind_context(phase="filesystem", source=str(root))
        logger.log_phase("filesystem", "started")

        phase.results = await self.driver.migrate_folder(root)

        self.reporter.phase_completed("Filesystem migration", f"{phase.total_objects} objects")
        logger.log_phase("filesystem", "completed", objects=phase.total_objects)
        return phase

    async def _migrate_cloud(self) -> PhaseResult:
        phase = PhaseResult(name="Cloud", source="live")
        self.summary.phases.append(phase)
        self.reporter.phase_started("Cloud migration", "live → uat")
        logger.bind_context(phase="cloud", source="live")
        logger.log_phase("cloud", "started")

        phase.results = await self.driver.migrate_containers()

        self.reporter.phase_completed("Cloud migration", f"{phase.total_objects} objects")
        logger.log_phase("cloud", "completed", objects=phase.total_objects)
        return phase

    async def _migrate_parallel(self) -> None:
        """Run all filesystem roots and the cloud phase concurrently.

        All of them finish before the first failure is re-raised.
        """
        self._transition(MigrationState.MIGRATING_FILESYSTEM)
        work = [self._migrate_folder(root) for root in self.config.storage.content_roots]
        work.append(self._migrate_cloud())

        outcomes = await asyncio.gather(*work, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        self._transition(MigrationState.MIGRATING_CLOUD)

    async def close(self) -> None:
        """Close the stores this orchestrator created."""
        for store in self._owned_stores:
            await store.close()
        self._owned_stores.clear()
