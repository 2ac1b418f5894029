"""Core module for the migration tool."""

from cms_migrator.core.database import ContainerInfoDatabase
from cms_migrator.core.orchestrator import MigrationOrchestrator, MigrationState, MigrationSummary

__all__ = ["ContainerInfoDatabase", "MigrationOrchestrator", "MigrationState", "MigrationSummary"]
