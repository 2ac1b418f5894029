"""Azure Blob Storage backend."""

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobType
from azure.storage.blob.aio import BlobServiceClient

from cms_migrator.logging import get_logger
from cms_migrator.storage.base import BlobData, BlobEntry, BlobStore, Page
from cms_migrator.utils.errors import TransportError, create_retry_decorator

R = TypeVar("R")

# Transient failures worth another attempt; everything else is fatal
RETRYABLE_ERRORS = (ServiceRequestError, ServiceResponseError)


class AzureBlobStore(BlobStore):
    """Blob store backed by an Azure storage account."""

    def __init__(
        self,
        connection_string: str,
        name: str,
        page_size: int = 5000,
        retry_max_attempts: int = 3,
        retry_backoff_factor: float = 2.0,
    ) -> None:
        """Initialize the store.

        Args:
            connection_string: Storage account connection string
            name: Environment label used in logs and errors (live, uat)
            page_size: Maximum results per listing page
            retry_max_attempts: Attempts for transient failures
            retry_backoff_factor: Exponential backoff factor
        """
        self.name = name
        self.page_size = page_size
        self.logger = get_logger(f"blob_store.{name}")
        self._client = BlobServiceClient.from_connection_string(connection_string)
        self._retry = create_retry_decorator(
            RETRYABLE_ERRORS,
            max_attempts=retry_max_attempts,
            backoff_factor=retry_backoff_factor,
        )

    async def _call(
        self,
        operation: str,
        func: Callable[..., Awaitable[R]],
        *args: Any,
        retry: bool = True,
        **context: Any,
    ) -> R:
        """Run a storage call, retrying transient failures.

        Raises:
            TransportError: If the call fails for good
        """
        call = self._retry(func) if retry else func
        try:
            return await call(*args)
        except AzureError as e:
            raise TransportError(
                f"{operation} failed on {self.name} storage: {e}",
                context={"operation": operation, "account": self.name, **context},
            ) from e

    async def list_containers(self, continuation_token: Optional[str] = None) -> Page[str]:
        async def _list() -> Page[str]:
            pages = self._client.list_containers(results_per_page=self.page_size).by_page(
                continuation_token=continuation_token
            )
            try:
                page = await pages.__anext__()
            except StopAsyncIteration:
                return Page([], None)
            names = [container.name async for container in page]
            return Page(names, pages.continuation_token or None)

        return await self._call("list_containers", _list)

    async def create_container_if_not_exists(self, container: str) -> bool:
        async def _create() -> bool:
            try:
                await self._client.create_container(container)
            except ResourceExistsError:
                return False
            return True

        created = await self._call("create_container", _create, container=container)
        if created:
            self.logger.info("container_created", container=container)
        return created

    async def delete_container_if_exists(self, container: str) -> bool:
        async def _delete() -> bool:
            try:
                await self._client.delete_container(container)
            except ResourceNotFoundError:
                return False
            return True

        return await self._call("delete_container", _delete, container=container)

    async def list_blobs(
        self,
        container: str,
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        continuation_token: Optional[str] = None,
    ) -> Page[BlobEntry]:
        container_client = self._client.get_container_client(container)

        async def _list() -> Page[BlobEntry]:
            pages = container_client.list_blobs(
                name_starts_with=prefix,
                include=["metadata"] if include_metadata else None,
                results_per_page=self.page_size,
            ).by_page(continuation_token=continuation_token)
            try:
                page = await pages.__anext__()
            except StopAsyncIteration:
                return Page([], None)
            entries = [
                BlobEntry(
                    name=blob.name,
                    metadata=dict(blob.metadata or {}),
                    blob_type=BlobType(blob.blob_type).value,
                )
                async for blob in page
            ]
            return Page(entries, pages.continuation_token or None)

        return await self._call("list_blobs", _list, container=container, prefix=prefix)

    async def open_read_stream(self, container: str, name: str) -> AsyncIterator[bytes]:
        blob_client = self._client.get_blob_client(container, name)
        downloader = await self._call(
            "download_blob", blob_client.download_blob, container=container, blob=name
        )
        try:
            async for chunk in downloader.chunks():
                yield chunk
        except AzureError as e:
            raise TransportError(
                f"download_blob failed on {self.name} storage: {e}",
                context={"operation": "download_blob", "container": container, "blob": name},
            ) from e

    async def upload_blob(self, container: str, name: str, data: BlobData) -> None:
        blob_client = self._client.get_blob_client(container, name)

        async def _upload() -> None:
            await blob_client.upload_blob(data, overwrite=True)

        # A consumed stream cannot be replayed, so only raw bytes are retried
        await self._call(
            "upload_blob",
            _upload,
            retry=isinstance(data, bytes),
            container=container,
            blob=name,
        )

    async def get_metadata(self, container: str, name: str) -> Dict[str, str]:
        blob_client = self._client.get_blob_client(container, name)
        properties = await self._call(
            "get_blob_properties",
            blob_client.get_blob_properties,
            container=container,
            blob=name,
        )
        return dict(properties.metadata or {})

    async def set_metadata(self, container: str, name: str, metadata: Dict[str, str]) -> None:
        blob_client = self._client.get_blob_client(container, name)
        await self._call(
            "set_blob_metadata",
            blob_client.set_blob_metadata,
            metadata,
            container=container,
            blob=name,
        )

    async def close(self) -> None:
        await self._client.close()
