"""Storage backend contract consumed by the migration engine."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterable, AsyncIterator, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, Field

T = TypeVar("T")

BlobData = Union[bytes, AsyncIterable[bytes]]

BLOCK_BLOB = "BlockBlob"


class Page(Generic[T]):
    """One page of a paginated listing."""

    def __init__(self, items: List[T], continuation_token: Optional[str] = None) -> None:
        """Initialize page.

        Args:
            items: Items on this page
            continuation_token: Token for the next page, None when exhausted
        """
        self.items = items
        self.continuation_token = continuation_token

    def __repr__(self) -> str:
        return f"Page(items={len(self.items)}, continuation_token={self.continuation_token!r})"


class BlobEntry(BaseModel):
    """A listed blob and the metadata returned with it."""

    name: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    blob_type: str = BLOCK_BLOB


class BlobStore(ABC):
    """Async access to one storage account."""

    @abstractmethod
    async def list_containers(self, continuation_token: Optional[str] = None) -> Page[str]:
        """List one page of container names."""

    @abstractmethod
    async def create_container_if_not_exists(self, container: str) -> bool:
        """Create a container.

        Returns:
            True if the container was created, False if it already existed
        """

    @abstractmethod
    async def delete_container_if_exists(self, container: str) -> bool:
        """Delete a container.

        Returns:
            True if the container was deleted, False if it did not exist
        """

    @abstractmethod
    async def list_blobs(
        self,
        container: str,
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        continuation_token: Optional[str] = None,
    ) -> Page[BlobEntry]:
        """List one page of blobs whose names start with ``prefix``."""

    @abstractmethod
    def open_read_stream(self, container: str, name: str) -> AsyncIterator[bytes]:
        """Stream the content of a blob in chunks."""

    @abstractmethod
    async def upload_blob(self, container: str, name: str, data: BlobData) -> None:
        """Upload a whole blob, overwriting any existing one."""

    @abstractmethod
    async def get_metadata(self, container: str, name: str) -> Dict[str, str]:
        """Fetch the metadata of a blob."""

    @abstractmethod
    async def set_metadata(self, container: str, name: str, metadata: Dict[str, str]) -> None:
        """Replace the metadata of a blob."""

    async def close(self) -> None:
        """Release network resources."""

    async def __aenter__(self) -> "BlobStore":
        """Enter async context."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context."""
        await self.close()
