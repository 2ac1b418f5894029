"""Unit test configuration and shared fixtures."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import pytest
from rich.console import Console

from cms_migrator.config import Config
from cms_migrator.storage.base import BLOCK_BLOB, BlobData, BlobEntry, BlobStore, Page
from cms_migrator.utils.errors import TransportError
from cms_migrator.utils.progress import MigrationReporter

# ---------------------------------------------------------------------------
# In-memory blob store
# ---------------------------------------------------------------------------


class InMemoryBlobStore(BlobStore):
    """Blob store keeping containers in dictionaries.

    Listings are paginated with integer offsets as continuation tokens.
    ``fail_upload`` can inject a transport failure for chosen blobs and
    ``upload_metadata`` mimics attributes the service attaches on upload.
    """

    def __init__(
        self,
        page_size: int = 100,
        fail_upload: Optional[Callable[[str, str], bool]] = None,
        upload_metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        self.page_size = page_size
        self.fail_upload = fail_upload
        self.upload_metadata = upload_metadata or {}
        self.containers: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.uploads: List[Tuple[str, str]] = []
        self.container_tokens: List[Optional[str]] = []
        self.blob_tokens: List[Tuple[str, Optional[str]]] = []
        self.blob_types: Dict[Tuple[str, str], str] = {}
        self.closed = False

    # helpers -------------------------------------------------------------

    def add_blob(
        self,
        container: str,
        name: str,
        data: bytes = b"",
        metadata: Optional[Dict[str, str]] = None,
        blob_type: str = BLOCK_BLOB,
    ) -> None:
        self.containers.setdefault(container, {})[name] = {
            "data": data,
            "metadata": dict(metadata or {}),
        }
        self.blob_types[(container, name)] = blob_type

    def add_container(self, container: str) -> None:
        self.containers.setdefault(container, {})

    def blob(self, container: str, name: str) -> Dict[str, Any]:
        return self.containers[container][name]

    def names(self, container: str) -> List[str]:
        return sorted(self.containers.get(container, {}))

    def _page(self, items: List[Any], token: Optional[str]) -> Page[Any]:
        start = int(token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(items) else None
        return Page(items[start:end], next_token)

    # BlobStore -----------------------------------------------------------

    async def list_containers(self, continuation_token: Optional[str] = None) -> Page[str]:
        self.container_tokens.append(continuation_token)
        return self._page(sorted(self.containers), continuation_token)

    async def create_container_if_not_exists(self, container: str) -> bool:
        if container in self.containers:
            return False
        self.containers[container] = {}
        self.created.append(container)
        return True

    async def delete_container_if_exists(self, container: str) -> bool:
        if container not in self.containers:
            return False
        del self.containers[container]
        self.deleted.append(container)
        return True

    async def list_blobs(
        self,
        container: str,
        prefix: Optional[str] = None,
        include_metadata: bool = False,
        continuation_token: Optional[str] = None,
    ) -> Page[BlobEntry]:
        self.blob_tokens.append((container, continuation_token))
        if container not in self.containers:
            raise TransportError(f"Container {container} not found")
        entries = [
            BlobEntry(
                name=name,
                metadata=dict(blob["metadata"]) if include_metadata else {},
                blob_type=self.blob_types.get((container, name), BLOCK_BLOB),
            )
            for name, blob in sorted(self.containers[container].items())
            if name.startswith(prefix or "")
        ]
        return self._page(entries, continuation_token)

    async def open_read_stream(self, container: str, name: str) -> AsyncIterator[bytes]:
        data = self.containers[container][name]["data"]
        for start in range(0, len(data), 4):
            yield data[start:start + 4]

    async def upload_blob(self, container: str, name: str, data: BlobData) -> None:
        if container not in self.containers:
            raise TransportError(f"Container {container} not found")
        if self.fail_upload and self.fail_upload(container, name):
            raise TransportError(f"Upload of {name} failed")

        if isinstance(data, bytes):
            content = data
        else:
            content = b"".join([chunk async for chunk in data])

        self.containers[container][name] = {
            "data": content,
            "metadata": dict(self.upload_metadata),
        }
        self.uploads.append((container, name))

    async def get_metadata(self, container: str, name: str) -> Dict[str, str]:
        return dict(self.containers[container][name]["metadata"])

    async def set_metadata(self, container: str, name: str, metadata: Dict[str, str]) -> None:
        self.containers[container][name]["metadata"] = dict(metadata)

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def write_file(path: Path, content: bytes = b"data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture()
def content_root(tmp_path: Path) -> Path:
    """Content folder with two customers and two non-customer folders.

    ::

        3/Label/a.txt, 3/Label/sub/b.txt, 3/Tile/t.png
        007/Tile/x.bin
        abc/Label/ignored.txt
        cust-1/Label/ignored.txt
    """
    root = tmp_path / "App_Data"
    write_file(root / "3" / "Label" / "a.txt", b"label-a")
    write_file(root / "3" / "Label" / "sub" / "b.txt", b"label-b")
    write_file(root / "3" / "Tile" / "t.png", b"tile")
    write_file(root / "007" / "Tile" / "x.bin", b"x")
    write_file(root / "abc" / "Label" / "ignored.txt")
    write_file(root / "cust-1" / "Label" / "ignored.txt")
    (root / "readme.txt").write_text("not a folder")
    return root


@pytest.fixture()
def uat_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def live_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture()
def reporter(output: io.StringIO) -> MigrationReporter:
    return MigrationReporter(Console(file=output, width=200, color_system=None))


@pytest.fixture()
def make_config(content_root: Path, tmp_path: Path) -> Callable[..., Config]:
    """Build a Config for the content_root fixture; keyword args override ``migration``."""

    def _make(alternative: Optional[Path] = None, **migration: Any) -> Config:
        return Config(
            storage={
                "UatConnectionString": "UseDevelopmentStorage=true",
                "LiveConnectionString": "UseDevelopmentStorage=true",
                "UatFileStorageDbConnectionString": f"sqlite:///{tmp_path / 'filestorage.db'}",
                "ContentFolderPath": str(content_root),
                "AlternativeContentFolderPath": str(alternative) if alternative else None,
            },
            migration=migration,
        )

    return _make
