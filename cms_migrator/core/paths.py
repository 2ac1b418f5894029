"""Mapping of source locations onto destination names.

Pure functions, no I/O.
"""

import re
from enum import Enum
from pathlib import PurePath
from typing import Optional, Union

from cms_migrator.utils.errors import PathMappingError

CONTAINER_PREFIX = "customer-"

# Platform data lives in these customers and is never reset
PLATFORM_CUSTOMER_IDS = frozenset({0, 1})

_SEPARATORS = re.compile(r"[\\/]+")


class Category(str, Enum):
    """Sub-namespace of a customer's content."""

    LABEL = "Label"
    TILE = "Tile"


def to_destination_key(source_root: Union[str, PurePath], file_path: Union[str, PurePath]) -> str:
    """Map a file below ``source_root`` onto an object key.

    The root prefix is stripped, leading separators are trimmed and every
    remaining separator becomes ``/``.

    Args:
        source_root: Customer folder the key is relative to
        file_path: File inside ``source_root``

    Returns:
        Object key using forward slashes

    Raises:
        PathMappingError: If ``file_path`` is not below ``source_root``
    """
    root = _SEPARATORS.sub("/", str(source_root)).rstrip("/")
    path = _SEPARATORS.sub("/", str(file_path))

    if not path.startswith(root + "/"):
        raise PathMappingError(
            f"{file_path} is not inside {source_root}",
            context={"source_root": str(source_root), "file_path": str(file_path)},
        )

    key = path[len(root):].lstrip("/")
    if not key:
        raise PathMappingError(
            f"{file_path} does not name a file inside {source_root}",
            context={"source_root": str(source_root), "file_path": str(file_path)},
        )
    return key


def to_destination_container(customer_id: int) -> str:
    """Container name of a customer."""
    return f"{CONTAINER_PREFIX}{customer_id}"


def parse_customer_id(name: str) -> Optional[int]:
    """Parse a folder name as a customer id.

    Returns:
        The id, or None when the name is not a customer folder
    """
    if not name.isascii() or not name.isdigit():
        return None
    return int(name)


def is_platform_container(name: str) -> bool:
    """Whether a container holds platform data (``customer-0``/``customer-1``)."""
    return name in {to_destination_container(i) for i in PLATFORM_CUSTOMER_IDS}
