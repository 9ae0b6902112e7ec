"""Chunk and shard geometry for pyramid levels.

This module contains helper functions for:
- Planning the chunk shape (atomic I/O unit) of a level from a byte budget
- Planning the shard shape that bundles chunks into one storage object
- Walking chunk grids: chunk counts, voxel ranges, overlaps between grids

All shapes are ``(c, z, y, x)`` tuples. Budgets are soft targets: a single
voxel larger than the chunk budget is still accepted.
"""

from __future__ import annotations

import itertools
import math
from typing import Iterator, NamedTuple, Sequence, Tuple

from attrs import frozen

VolumeChunkShape = Tuple[int, int, int, int]

DEFAULT_CHUNK_TARGET_BYTES = 2 * 1024 * 1024  # 2 MiB
DEFAULT_SHARD_TARGET_BYTES = 64 * 1024 * 1024  # 64 MiB
MAX_SHARD_MULTIPLIER = 8
DEFAULT_BYTES_PER_VALUE = 2

MAX_CHUNK_CHANNELS = 4
MAX_CHUNK_DEPTH = 16
MAX_CHUNK_EXTENT = 256

# Axis indices into (c, z, y, x)
_SHRINK_ORDER = (3, 2, 1, 0)
_EXPAND_ORDER = (1, 2, 3, 0)


@frozen
class VolumeDimensions:
    """Voxel extent of a volume.

    Attributes:
        width (int): Extent along x
        height (int): Extent along y
        depth (int): Extent along z
        channels (int): Number of channels
    """

    width: int
    height: int
    depth: int
    channels: int

    @classmethod
    def from_shape(cls, shape: Sequence[int]) -> VolumeDimensions:
        channels, depth, height, width = shape
        return cls(width=width, height=height, depth=depth, channels=channels)


class AxisRange(NamedTuple):
    """Half-open ``[start, end)`` interval along one axis."""

    start: int
    end: int

    @property
    def size(self) -> int:
        return max(0, self.end - self.start)


def _clamp_positive_integer(value, fallback: int) -> int:
    if not math.isfinite(value) or value <= 0:
        return fallback
    return int(math.floor(value))


def chunk_byte_size(shape: Sequence[int], bytes_per_value: int) -> int:
    return math.prod(shape) * bytes_per_value


def compute_chunk_shape(
    dimensions: VolumeDimensions,
    bytes_per_value: int = DEFAULT_BYTES_PER_VALUE,
    target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES,
) -> VolumeChunkShape:
    """
    Plan the chunk shape of a level.

    Starts from ``[min(channels, 4), min(depth, 16), min(height, 256),
    min(width, 256)]`` and halves the first axis larger than one, in the
    order x, y, z, c, until the chunk fits ``target_bytes``.

    Args:
        dimensions: Voxel extent of the level
        bytes_per_value: Element byte width
        target_bytes: Soft byte budget for one chunk

    Returns:
        Chunk shape as a ``(c, z, y, x)`` tuple with every axis >= 1
    """
    shape = [
        _clamp_positive_integer(min(dimensions.channels, MAX_CHUNK_CHANNELS), 1),
        _clamp_positive_integer(min(dimensions.depth, MAX_CHUNK_DEPTH), 1),
        _clamp_positive_integer(min(dimensions.height, MAX_CHUNK_EXTENT), 1),
        _clamp_positive_integer(min(dimensions.width, MAX_CHUNK_EXTENT), 1),
    ]

    while chunk_byte_size(shape, bytes_per_value) > target_bytes:
        axis = next((axis for axis in _SHRINK_ORDER if shape[axis] > 1), None)
        if axis is None:
            break
        shape[axis] = max(1, shape[axis] // 2)

    return tuple(shape)


def compute_shard_shape(
    chunk_shape: Sequence[int],
    bytes_per_value: int = DEFAULT_BYTES_PER_VALUE,
    target_bytes: int = DEFAULT_SHARD_TARGET_BYTES,
) -> VolumeChunkShape:
    """
    Plan the shard shape bundling chunks of a level.

    Each axis, in the order z, y, x, c, is doubled while the shard stays
    below ``target_bytes``, never beyond ``MAX_SHARD_MULTIPLIER`` times the
    chunk extent. Shard extents are therefore whole multiples of the chunk.

    Args:
        chunk_shape: Chunk shape from compute_chunk_shape
        bytes_per_value: Element byte width
        target_bytes: Soft byte budget for one shard

    Returns:
        Shard shape as a ``(c, z, y, x)`` tuple
    """
    shard = list(chunk_shape)
    max_shape = [extent * MAX_SHARD_MULTIPLIER for extent in chunk_shape]

    size = chunk_byte_size(shard, bytes_per_value)
    for axis in _EXPAND_ORDER:
        while size < target_bytes and shard[axis] < max_shape[axis]:
            shard[axis] = min(max_shape[axis], shard[axis] * 2)
            size = chunk_byte_size(shard, bytes_per_value)

    return tuple(shard)


def compute_level_shape(previous: Sequence[int]) -> VolumeChunkShape:
    """Shape of the next pyramid level: spatial axes halved, rounded up."""
    channels, depth, height, width = previous
    return (
        channels,
        max(1, math.ceil(depth / 2)),
        max(1, math.ceil(height / 2)),
        max(1, math.ceil(width / 2)),
    )


def compute_chunk_counts(
    shape: Sequence[int], chunk_shape: Sequence[int]
) -> VolumeChunkShape:
    """Number of chunks along each axis."""
    return tuple(math.ceil(total / size) for total, size in zip(shape, chunk_shape))


def chunk_range(index: int, chunk_size: int, total: int) -> AxisRange:
    """Voxel range covered by chunk ``index`` along one axis, clipped to ``total``."""
    start = index * chunk_size
    return AxisRange(start, min(total, start + chunk_size))


def local_range(
    global_start: int, global_end: int, chunk_start: int, chunk_size: int
) -> AxisRange:
    """Chunk-relative overlap between a global range and a chunk's footprint."""
    start = max(global_start, chunk_start) - chunk_start
    end = min(global_end, chunk_start + chunk_size) - chunk_start
    return AxisRange(start, end)


def iter_chunk_coords(
    shape: Sequence[int], chunk_shape: Sequence[int]
) -> Iterator[VolumeChunkShape]:
    """Yield every chunk coordinate of a grid in strict c, z, y, x order."""
    counts = compute_chunk_counts(shape, chunk_shape)
    return itertools.product(*(range(count) for count in counts))


def overlapping_chunks(
    ranges: Sequence[AxisRange], chunk_shape: Sequence[int]
) -> list[VolumeChunkShape]:
    """
    Chunk coordinates of a grid intersecting a voxel region.

    Args:
        ranges: Per-axis voxel ranges of the region (non-empty)
        chunk_shape: Chunk shape of the grid

    Returns:
        Coordinates in c, z, y, x order
    """
    per_axis = [
        range(axis_range.start // size, (axis_range.end - 1) // size + 1)
        for axis_range, size in zip(ranges, chunk_shape)
    ]
    return list(itertools.product(*per_axis))
