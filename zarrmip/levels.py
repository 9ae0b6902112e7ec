"""Level arrays: creation and region access.

A LevelArray wraps one Zarr v3 array of the pyramid together with the chunk
geometry the downsampler walks: inner chunk shape, shard shape and the
storage key of each shard. Chunks are read one region at a time. Writes go
one shard at a time, so every shard object is encoded and stored once.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, Sequence, Tuple

import numpy as np
import zarr.api.asynchronous
from attrs import define
from zarr.abc.store import Store
from zarr.core.array import AsyncArray

from .enums import VolumeDataType
from .geometry import (
    DEFAULT_CHUNK_TARGET_BYTES,
    DEFAULT_SHARD_TARGET_BYTES,
    VolumeChunkShape,
    VolumeDimensions,
    chunk_range,
    compute_chunk_counts,
    compute_chunk_shape,
    compute_shard_shape,
)
from .logging import get_logger
from .store import join_path, store_key

logger = get_logger(__name__)

DIMENSION_NAMES = ("c", "z", "y", "x")


def _grid_region(coords: Sequence[int], grid_shape: Sequence[int], shape: Sequence[int]) -> Tuple[slice, ...]:
    return tuple(
        slice(*chunk_range(index, size, total)) for index, size, total in zip(coords, grid_shape, shape)
    )


@define
class LevelArray:
    """
    One stored pyramid level and its chunk geometry.

    Attributes:
        array (AsyncArray): The underlying Zarr array
        path (str): Absolute path of the array in its store
        chunk_shape (tuple): Inner chunk shape ``(c, z, y, x)``
        shard_shape (tuple or None): Shard shape, None for unsharded arrays
    """

    array: AsyncArray
    path: str
    chunk_shape: VolumeChunkShape
    shard_shape: Optional[VolumeChunkShape] = None

    @property
    def shape(self) -> VolumeChunkShape:
        return tuple(self.array.shape)

    @property
    def store(self) -> Store:
        return self.array.store

    @property
    def data_type(self) -> VolumeDataType:
        return VolumeDataType.from_dtype(self.array.dtype)

    @property
    def chunk_counts(self) -> VolumeChunkShape:
        return compute_chunk_counts(self.shape, self.chunk_shape)

    @property
    def write_shape(self) -> VolumeChunkShape:
        """Extent of one stored object: the shard, or the chunk when unsharded."""
        return self.shard_shape or self.chunk_shape

    @property
    def shard_counts(self) -> VolumeChunkShape:
        return compute_chunk_counts(self.shape, self.write_shape)

    def chunk_region(self, coords: Sequence[int]) -> Tuple[slice, ...]:
        """Voxel region of a chunk, clipped to the array shape."""
        return _grid_region(coords, self.chunk_shape, self.shape)

    def shard_region(self, coords: Sequence[int]) -> Tuple[slice, ...]:
        """Voxel region of a shard, clipped to the array shape."""
        return _grid_region(coords, self.write_shape, self.shape)

    def shard_key(self, coords: Sequence[int]) -> str:
        """Store key of the shard at shard-grid coordinates ``coords``."""
        return store_key(self.path, self.array.metadata.encode_chunk_key(tuple(coords)))

    async def read_chunk(self, coords: Sequence[int]) -> np.ndarray:
        """Read one chunk; edge chunks come back clipped to the array shape."""
        return np.asarray(await self.array.getitem(self.chunk_region(coords)))

    async def read_chunks(
        self, coords_list: Sequence[Sequence[int]], concurrency: int = 1
    ) -> AsyncIterator[Tuple[Tuple[int, ...], np.ndarray]]:
        """
        Read chunks in the given order.

        With ``concurrency > 1`` the chunks are fetched in windows of that
        size with asyncio.gather; they are still yielded in order.
        """
        if concurrency <= 1:
            for coords in coords_list:
                yield tuple(coords), await self.read_chunk(coords)
            return

        for offset in range(0, len(coords_list), concurrency):
            window = [tuple(coords) for coords in coords_list[offset : offset + concurrency]]
            results = await asyncio.gather(*(self.read_chunk(coords) for coords in window))
            for coords, data in zip(window, results):
                yield coords, data

    async def _write_region(self, region: Tuple[slice, ...], data: np.ndarray) -> None:
        clipped = data[tuple(slice(0, r.stop - r.start) for r in region)]
        await self.array.setitem(region, clipped)

    async def write_chunk(self, coords: Sequence[int], data: np.ndarray) -> None:
        """
        Write one inner chunk.

        In a sharded array this rewrites the whole enclosing shard; bulk
        writers should use write_shard().

        Args:
            coords: Chunk coordinates
            data: Buffer of ``chunk_shape`` or of the clipped chunk region;
                voxels beyond the array edge are dropped
        """
        await self._write_region(self.chunk_region(coords), data)

    async def write_shard(self, coords: Sequence[int], data: np.ndarray) -> None:
        """
        Write one complete shard in a single store write.

        Args:
            coords: Shard-grid coordinates
            data: Buffer of ``write_shape`` or of the clipped shard region;
                voxels beyond the array edge are dropped
        """
        logger.debug("Writing %s shard %s (%s)", self.path, tuple(coords), self.shard_key(coords))
        await self._write_region(self.shard_region(coords), data)


async def create_level_array(
    store: Store,
    path: str,
    shape: Sequence[int],
    dtype,
    chunk_target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES,
    shard_target_bytes: int = DEFAULT_SHARD_TARGET_BYTES,
    overwrite: bool = False,
) -> LevelArray:
    """
    Create a new sharded level array.

    Chunk and shard shapes are planned from the byte width of ``dtype``.
    Chunks are stored uncompressed inside their shard; the fill value is 0.

    Args:
        store: Store to create the array in
        path: Absolute array path
        shape: Level shape ``(c, z, y, x)``
        dtype: Element type, one of VolumeDataType
        chunk_target_bytes: Soft byte budget of one chunk
        shard_target_bytes: Soft byte budget of one shard
        overwrite: Replace an existing node at ``path``

    Returns:
        LevelArray for the new array

    Raises:
        UnsupportedDataTypeError: If ``dtype`` is not a VolumeDataType
        zarr.errors.ContainsArrayError: If an array exists and overwrite is False
    """
    data_type = VolumeDataType.from_dtype(dtype)
    shape = tuple(int(extent) for extent in shape)
    bytes_per_value = data_type.bytes_per_value
    chunk_shape = compute_chunk_shape(
        VolumeDimensions.from_shape(shape),
        bytes_per_value=bytes_per_value,
        target_bytes=chunk_target_bytes,
    )
    shard_shape = compute_shard_shape(
        chunk_shape, bytes_per_value=bytes_per_value, target_bytes=shard_target_bytes
    )

    array = await zarr.api.asynchronous.create_array(
        store=store,
        name=store_key(path),
        shape=shape,
        dtype=data_type.numpy_dtype,
        chunks=chunk_shape,
        shards=shard_shape,
        compressors=None,
        fill_value=data_type.fill_value,
        dimension_names=DIMENSION_NAMES,
        zarr_format=3,
        overwrite=overwrite,
    )
    logger.debug(
        "Created level %s shape=%s chunks=%s shards=%s dtype=%s",
        join_path(path),
        shape,
        chunk_shape,
        shard_shape,
        data_type.value,
    )
    return LevelArray(array=array, path=join_path(path), chunk_shape=chunk_shape, shard_shape=shard_shape)


async def open_level_array(store: Store, path: str) -> LevelArray:
    """Open an existing array (any chunking, sharded or not) as a LevelArray."""
    array = await zarr.api.asynchronous.open_array(store=store, path=store_key(path))
    return LevelArray(
        array=array,
        path=join_path(path),
        chunk_shape=tuple(array.chunks),
        shard_shape=tuple(array.shards) if array.shards is not None else None,
    )
