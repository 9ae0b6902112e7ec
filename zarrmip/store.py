"""Store access and group metadata helpers.

zarrmip addresses nodes with absolute, slash-separated paths (``"/0"``,
``"/mipmaps/0/level-1"``). Zarr stores use relative keys, so every path goes
through store_key() before it reaches the store.

Group metadata is read and written as raw ``zarr.json`` documents. A group
whose metadata is missing or cannot be decoded is reported as ``None`` so a
first build can bootstrap it; store I/O errors propagate unchanged.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import zarr.storage
from zarr.abc.store import Store
from zarr.core.buffer import default_buffer_prototype

from .logging import get_logger

logger = get_logger(__name__)

ZARR_JSON = "zarr.json"

GroupAttributes = Dict[str, Any]


def join_path(*segments: str) -> str:
    """Join path segments into an absolute path, dropping empty segments.

    Examples:
        >>> join_path("/mipmaps", "/0", "level-1")
        '/mipmaps/0/level-1'
    """
    parts = [segment.strip("/") for segment in segments]
    return "/" + "/".join(part for part in parts if part)


def store_key(path: str, *names: str) -> str:
    """Relative store key for a node path, optionally extended with names."""
    return join_path(path, *names).lstrip("/")


def open_store(location: Union[str, Path, Store, None] = None, mode: str = "a") -> Store:
    """
    Open the store backing a pyramid.

    Args:
        location: An existing Store (returned as is), None for an in-memory
            store, a URL handled by fsspec (``s3://...``), a ``.zip`` path,
            or a local directory path
        mode: ``"r"`` for read-only access, ``"a"``/``"w"`` for writing

    Returns:
        A zarr Store
    """
    if isinstance(location, Store):
        return location
    read_only = mode == "r"
    if location is None:
        return zarr.storage.MemoryStore(read_only=read_only)

    location = str(location)
    if "://" in location:
        return zarr.storage.FsspecStore.from_url(location, read_only=read_only)
    if location.endswith(".zip"):
        return zarr.storage.ZipStore(location, mode=mode)
    return zarr.storage.LocalStore(location, read_only=read_only)


async def read_bytes(store: Store, key: str) -> Optional[bytes]:
    """Fetch the value stored under ``key``, or None if absent."""
    buffer = await store.get(key, prototype=default_buffer_prototype())
    if buffer is None:
        return None
    return buffer.to_bytes()


async def write_bytes(store: Store, key: str, data: bytes) -> None:
    await store.set(key, default_buffer_prototype().buffer.from_bytes(data))


async def read_group_metadata(store: Store, path: str) -> Optional[Dict[str, Any]]:
    """
    Read the ``zarr.json`` document of a group.

    Returns:
        The decoded document, or None when it is missing or unreadable
    """
    raw = await read_bytes(store, store_key(path, ZARR_JSON))
    if raw is None:
        return None
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        logger.warning("Ignoring unreadable group metadata at %s", join_path(path))
        return None
    if not isinstance(document, dict):
        return None
    return document


async def write_group_metadata(store: Store, path: str, metadata: Dict[str, Any]) -> None:
    payload = json.dumps(metadata).encode("utf-8")
    await write_bytes(store, store_key(path, ZARR_JSON), payload)


async def update_group_attributes(
    store: Store,
    path: str,
    update: Callable[[GroupAttributes], GroupAttributes],
) -> GroupAttributes:
    """
    Read-modify-write the attributes of a group.

    Missing metadata is bootstrapped as an empty Zarr v3 group. Keys of the
    existing document other than ``attributes`` are preserved.

    Args:
        store: Store holding the group
        path: Absolute group path (``"/"`` for the root)
        update: Receives a copy of the current attributes, returns the new ones

    Returns:
        The attributes that were written
    """
    existing = await read_group_metadata(store, path)
    if existing is None:
        existing = {"zarr_format": 3, "node_type": "group", "attributes": {}}
    current = existing.get("attributes")
    attributes = update(dict(current) if isinstance(current, dict) else {})
    await write_group_metadata(store, path, {**existing, "attributes": attributes})
    logger.debug("Updated attributes of group %s", join_path(path))
    return attributes
