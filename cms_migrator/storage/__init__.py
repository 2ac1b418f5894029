"""Storage backends for the migration tool."""

from cms_migrator.storage.azure_blob import AzureBlobStore
from cms_migrator.storage.base import BlobEntry, BlobStore, Page

__all__ = ["AzureBlobStore", "BlobEntry", "BlobStore", "Page"]
