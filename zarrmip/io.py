"""Reading and writing zarrmip datasets.

This module contains helpers around the pyramid builder:
- write_volume: store a numpy or dask volume as a sharded base array
- load_level: open any stored level lazily as a dask array
- read_statistics: fetch the per-channel statistics of a built pyramid
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import dask.array as da
import numpy as np
import zarr
from zarr.abc.store import Store

from .geometry import DEFAULT_CHUNK_TARGET_BYTES, DEFAULT_SHARD_TARGET_BYTES, iter_chunk_coords
from .histogram import ChannelStatistics
from .layout import VoxelResolution, create_root_attributes, write_root_attributes
from .levels import LevelArray, create_level_array
from .logging import get_logger
from .store import read_group_metadata, store_key

logger = get_logger(__name__)


async def write_volume(
    store: Store,
    path: str,
    data,
    channel_labels: Optional[Sequence[str]] = None,
    voxel_resolution: Optional[VoxelResolution] = None,
    chunk_target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES,
    shard_target_bytes: int = DEFAULT_SHARD_TARGET_BYTES,
    overwrite: bool = False,
) -> LevelArray:
    """
    Write a volume as a base array, one shard at a time.

    A dask input is only computed shard by shard, so volumes larger than
    memory can be imported.

    Args:
        store: Destination store
        path: Absolute path of the new array, e.g. ``"/0"``
        data: numpy or dask array shaped ``(c, z, y, x)`` or ``(z, y, x)``
        channel_labels: Optional labels written to the root attributes
        voxel_resolution: Optional voxel size written to the root attributes
        chunk_target_bytes: Soft byte budget of a chunk
        shard_target_bytes: Soft byte budget of a shard
        overwrite: Replace an existing array at ``path``

    Returns:
        LevelArray of the written base array

    Raises:
        ValueError: If ``data`` is not 3- or 4-dimensional, or the number of
            channel labels does not match the channel count
    """
    if data.ndim == 3:
        data = data[np.newaxis]
    if data.ndim != 4:
        raise ValueError(f"Expected a (c, z, y, x) or (z, y, x) volume, got shape {data.shape}")
    if channel_labels is not None and len(channel_labels) != data.shape[0]:
        raise ValueError(
            f"Got {len(channel_labels)} channel labels for {data.shape[0]} channel(s)"
        )

    level = await create_level_array(
        store,
        path,
        data.shape,
        data.dtype,
        chunk_target_bytes=chunk_target_bytes,
        shard_target_bytes=shard_target_bytes,
        overwrite=overwrite,
    )

    for coords in iter_chunk_coords(level.shape, level.write_shape):
        await level.write_shard(coords, np.asarray(data[level.shard_region(coords)]))

    if channel_labels is not None or voxel_resolution is not None:
        attributes = create_root_attributes(
            voxel_resolution=voxel_resolution, channel_labels=channel_labels
        )
        # Statistics belong to the pyramid build, not to the import
        attributes.pop("stats")
        await write_root_attributes(store, attributes)

    logger.info("Wrote volume %s shape=%s dtype=%s", level.path, level.shape, level.data_type.value)
    return level


def load_level(store: Store, path: str) -> da.Array:
    """
    Open a stored level lazily.

    Args:
        store: Store holding the level
        path: Absolute array path (base array or generated level)

    Returns:
        dask array chunked like the stored level
    """
    array = zarr.open_array(store=store, path=store_key(path))
    return da.from_zarr(array)


async def read_statistics(store: Store, base_path: str) -> Optional[List[ChannelStatistics]]:
    """
    Read the per-channel statistics recorded by build_mipmaps().

    Returns:
        One ChannelStatistics per channel, or None if the pyramid of
        ``base_path`` has not been built
    """
    metadata = await read_group_metadata(store, "/")
    if metadata is None:
        return None
    stats = metadata.get("attributes", {}).get("stats", {})
    entries = stats.get(base_path) if isinstance(stats, dict) else None
    if not isinstance(entries, list):
        return None
    return [ChannelStatistics.from_dict(entry) for entry in entries]
