"""Utility modules for the migration tool."""

from cms_migrator.utils.errors import (
    MigrationError,
    PathMappingError,
    TransferTimeoutError,
    TransportError,
)
from cms_migrator.utils.progress import MigrationReporter

__all__ = [
    "MigrationError",
    "PathMappingError",
    "TransferTimeoutError",
    "TransportError",
    "MigrationReporter",
]
