"""Max-pooling downsampling between pyramid levels.

downsample_level() fills one target level from its immediate source level by
2x2x2 max-pooling over z, y and x; channels map one to one. The target is
produced shard by shard: for each target shard the overlapping source chunks
are read, pooled into a freshly allocated shard buffer, and the buffer is
written back in one store write before the next shard is started. Peak
memory is one target shard plus the source chunks being read.

scan_level() is the statistics-only pass used when no level has to be built.
"""

from __future__ import annotations

import itertools
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .geometry import AxisRange, chunk_range, iter_chunk_coords, local_range, overlapping_chunks
from .histogram import ChannelExtent, StreamingHistogram
from .levels import LevelArray
from .logging import get_logger

logger = get_logger(__name__)

POOL_FACTOR = 2


def _feed_statistics(
    block: np.ndarray,
    channel_start: int,
    histograms: Optional[Sequence[StreamingHistogram]],
    extents: Optional[Sequence[ChannelExtent]],
) -> None:
    for offset, values in enumerate(block):
        channel = channel_start + offset
        if histograms is not None:
            histograms[channel].update(values)
        if extents is not None:
            extents[channel].update(values)


def _pooling_slices(global_start: int, length: int, target_start: int) -> List[Tuple[slice, slice]]:
    """
    Split one spatial axis of a source block by pooling parity.

    Source voxels whose global coordinate has the same parity land on
    consecutive target voxels, so each parity becomes a strided source slice
    paired with a contiguous slice of the target buffer.
    """
    pairs = []
    for parity in range(POOL_FACTOR):
        first = (parity - global_start) % POOL_FACTOR
        if first >= length:
            continue
        count = len(range(first, length, POOL_FACTOR))
        target_first = (global_start + first) // POOL_FACTOR - target_start
        pairs.append((slice(first, length, POOL_FACTOR), slice(target_first, target_first + count)))
    return pairs


def _pool_block(
    buffer: np.ndarray,
    written: np.ndarray,
    block: np.ndarray,
    block_origin: Sequence[int],
    target_origin: Sequence[int],
) -> None:
    """Max-pool a source block into the target shard buffer in place."""
    channel_start = block_origin[0] - target_origin[0]
    channels = slice(channel_start, channel_start + block.shape[0])
    axes = [
        _pooling_slices(block_origin[axis], block.shape[axis], target_origin[axis])
        for axis in (1, 2, 3)
    ]

    for (source_z, target_z), (source_y, target_y), (source_x, target_x) in itertools.product(*axes):
        values = block[:, source_z, source_y, source_x]
        target = (channels, target_z, target_y, target_x)
        current = buffer[target]
        seen = written[target]
        # First write stores the value; later writes keep the maximum
        buffer[target] = np.where(~seen | (values > current), values, current)
        written[target] = True


async def downsample_level(
    source: LevelArray,
    target: LevelArray,
    histograms: Optional[Sequence[StreamingHistogram]] = None,
    extents: Optional[Sequence[ChannelExtent]] = None,
    read_concurrency: int = 1,
) -> None:
    """
    Populate ``target`` from ``source`` by 2x max-pooling.

    Every source voxel is visited exactly once, so the statistics see each
    value once. They are fed one source block at a time through
    StreamingHistogram.update(); when a block widens the histogram range,
    its counts are rebinned once per block rather than once per value, so
    quantiles may differ from feeding the same values through add() by up
    to one bin width per range expansion.

    Args:
        source: Level to read; its spatial shape must be at most twice the
            target's
        target: Freshly created level of shape ``ceil(source / 2)``
        histograms: Per-channel histograms to feed with every source voxel.
            Pass only when ``source`` holds base-resolution data.
        extents: Per-channel running min/max, fed like ``histograms``
        read_concurrency: Number of source chunks fetched at once

    Raises:
        UnsupportedDataTypeError: If the target element type is not supported
    """
    data_type = target.data_type
    sentinel = data_type.sentinel
    fill = data_type.fill_value
    numpy_dtype = data_type.numpy_dtype
    source_shape = source.shape
    target_shape = target.shape

    logger.debug(
        "Downsampling %s %s -> %s %s", source.path, source_shape, target.path, target_shape
    )

    for shard_coords in iter_chunk_coords(target_shape, target.write_shape):
        target_ranges = [
            chunk_range(index, size, total)
            for index, size, total in zip(shard_coords, target.write_shape, target_shape)
        ]
        source_ranges = [target_ranges[0]] + [
            AxisRange(
                axis_range.start * POOL_FACTOR,
                min(total, axis_range.end * POOL_FACTOR),
            )
            for axis_range, total in zip(target_ranges[1:], source_shape[1:])
        ]

        # Shards may extend past the array edge; only the clipped region is pooled
        buffer_shape = tuple(axis_range.end - axis_range.start for axis_range in target_ranges)
        buffer = np.full(buffer_shape, sentinel, dtype=numpy_dtype)
        written = np.zeros(buffer_shape, dtype=bool)
        target_origin = [axis_range.start for axis_range in target_ranges]

        source_chunks = overlapping_chunks(source_ranges, source.chunk_shape)
        async for source_coords, data in source.read_chunks(source_chunks, read_concurrency):
            chunk_origin = [
                index * size for index, size in zip(source_coords, source.chunk_shape)
            ]
            local = [
                local_range(axis_range.start, axis_range.end, origin, extent)
                for axis_range, origin, extent in zip(source_ranges, chunk_origin, data.shape)
            ]
            block = data[tuple(slice(r.start, r.end) for r in local)]
            if block.size == 0:
                continue
            block_origin = [origin + r.start for origin, r in zip(chunk_origin, local)]

            if histograms is not None or extents is not None:
                _feed_statistics(block, block_origin[0], histograms, extents)
            _pool_block(buffer, written, block, block_origin, target_origin)

        # Voxels no source voxel reached, at the volume boundary
        buffer[~written] = fill

        await target.write_shard(shard_coords, buffer)


async def scan_level(
    source: LevelArray,
    histograms: Optional[Sequence[StreamingHistogram]] = None,
    extents: Optional[Sequence[ChannelExtent]] = None,
    read_concurrency: int = 1,
) -> None:
    """Feed every voxel of ``source`` to the per-channel statistics."""
    logger.debug("Scanning %s %s", source.path, source.shape)
    coords_list = list(iter_chunk_coords(source.shape, source.chunk_shape))
    async for coords, data in source.read_chunks(coords_list, read_concurrency):
        _feed_statistics(data, coords[0] * source.chunk_shape[0], histograms, extents)
