"""Pyramid builder.

build_mipmaps() turns a base array into a chain of half-resolution levels and
records per-channel intensity statistics in the store metadata:

- levels are written under ``{level_prefix}{base_path}/level-N``
- the root group's ``stats[base_path]`` receives one record per channel
- the analytics group's ``histograms[base_path]`` receives the finalized
  histograms

Statistics are gathered from base-resolution voxels only, during the first
downsampling pass (or a dedicated scan when the base is already small
enough). Builds are not resumable: a failure leaves already written levels
in place.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Dict, List

from attrs import define, field, validators
from zarr.abc.store import Store

from .downsample import downsample_level, scan_level
from .geometry import DEFAULT_CHUNK_TARGET_BYTES, DEFAULT_SHARD_TARGET_BYTES, compute_level_shape
from .histogram import (
    DEFAULT_HISTOGRAM_BINS,
    DEFAULT_QUANTILES,
    ChannelExtent,
    ChannelStatistics,
    FinalizedHistogram,
    StreamingHistogram,
)
from .levels import create_level_array, open_level_array
from .logging import get_logger
from .store import join_path, update_group_attributes

logger = get_logger(__name__)

DEFAULT_MAX_DIMENSION = 64
DEFAULT_LEVEL_PREFIX = "/mipmaps"
DEFAULT_ANALYTICS_GROUP = "/analytics"


def _positive(instance, attribute, value):
    if value < 1:
        raise ValueError(f"{attribute.name} must be >= 1, got {value}")


@define
class MipmapBuildOptions:
    """Settings of one pyramid build.

    Attributes:
        base_path (str): Path of the base array
        level_prefix (str): Path prefix under which levels are created
        target_max_dimension (int): Stop once max(z, y, x) is at or below this
        histogram_bins (int): Bins per channel histogram
        analytics_group_path (str): Group receiving the full histograms
        read_concurrency (int): Source chunks fetched at once (1 = serial)
        chunk_target_bytes (int): Soft byte budget of a level chunk
        shard_target_bytes (int): Soft byte budget of a level shard
        overwrite (bool): Replace existing level arrays
    """

    base_path: str = field(validator=validators.instance_of(str))
    level_prefix: str = field(default=DEFAULT_LEVEL_PREFIX, validator=validators.instance_of(str))
    target_max_dimension: int = field(default=DEFAULT_MAX_DIMENSION, validator=_positive)
    histogram_bins: int = field(default=DEFAULT_HISTOGRAM_BINS, validator=validators.ge(2))
    analytics_group_path: str = field(default=DEFAULT_ANALYTICS_GROUP, validator=validators.instance_of(str))
    read_concurrency: int = field(default=1, validator=_positive)
    chunk_target_bytes: int = field(default=DEFAULT_CHUNK_TARGET_BYTES, validator=_positive)
    shard_target_bytes: int = field(default=DEFAULT_SHARD_TARGET_BYTES, validator=_positive)
    overwrite: bool = False

    def level_path(self, index: int) -> str:
        return join_path(self.level_prefix, self.base_path, f"level-{index}")


@define
class MipmapBuildResult:
    """Outcome of build_mipmaps().

    Attributes:
        levels (List[str]): Generated level paths, coarsest last (base excluded)
        stats (List[FinalizedHistogram]): Finalized statistics per channel
    """

    levels: List[str] = field(factory=list)
    stats: List[FinalizedHistogram] = field(factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"levels": list(self.levels), "stats": [entry.to_dict() for entry in self.stats]}


def _channel_records(
    finalized: List[FinalizedHistogram], extents: List[ChannelExtent]
) -> List[ChannelStatistics]:
    records = []
    for channel, (entry, extent) in enumerate(zip(finalized, extents)):
        records.append(
            ChannelStatistics(
                channel=channel,
                min=extent.minimum if math.isfinite(extent.minimum) else entry.min,
                max=extent.maximum if math.isfinite(extent.maximum) else entry.max,
                histogram=entry.histogram,
                quantiles=entry.quantiles,
            )
        )
    return records


async def build_mipmaps(store: Store, base_path: str, **kwargs) -> MipmapBuildResult:
    """
    Build the mipmap pyramid and statistics of one base array.

    Args:
        store: Store holding the base array; levels and metadata are written
            to the same store
        base_path: Absolute path of the base array, ``(c, z, y, x)``
        **kwargs: Any MipmapBuildOptions field (level_prefix,
            target_max_dimension, histogram_bins, analytics_group_path,
            read_concurrency, chunk_target_bytes, shard_target_bytes,
            overwrite)

    Returns:
        MipmapBuildResult with the generated level paths and per-channel
        statistics

    Raises:
        ValueError: If an option is out of range
        UnsupportedDataTypeError: If the base array's element type is unsupported

    Examples:
        >>> store = zarr.storage.LocalStore("dataset.zarr")
        >>> result = await build_mipmaps(store, "/0", target_max_dimension=128)
        >>> result.levels
        ['/mipmaps/0/level-1', '/mipmaps/0/level-2']
    """
    options = MipmapBuildOptions(base_path=base_path, **kwargs)

    base = await open_level_array(store, options.base_path)
    data_type = base.data_type
    channels = base.shape[0]
    histograms = [StreamingHistogram(options.histogram_bins) for _ in range(channels)]
    extents = [ChannelExtent() for _ in range(channels)]

    logger.info(
        "Building mipmaps for %s shape=%s dtype=%s", base.path, base.shape, data_type.value
    )

    levels: List[str] = []
    current = base
    while max(current.shape[1:]) > options.target_max_dimension:
        level_index = len(levels) + 1
        next_shape = compute_level_shape(current.shape)
        level_path = options.level_path(level_index)
        target = await create_level_array(
            store,
            level_path,
            next_shape,
            data_type.numpy_dtype,
            chunk_target_bytes=options.chunk_target_bytes,
            shard_target_bytes=options.shard_target_bytes,
            overwrite=options.overwrite,
        )
        first_pass = level_index == 1
        await downsample_level(
            current,
            target,
            histograms=histograms if first_pass else None,
            extents=extents if first_pass else None,
            read_concurrency=options.read_concurrency,
        )
        logger.info("Wrote level %s shape=%s", level_path, next_shape)
        levels.append(level_path)
        current = target

    if not levels:
        logger.info(
            "%s is within %d voxels; collecting statistics only",
            base.path,
            options.target_max_dimension,
        )
        await scan_level(base, histograms, extents, read_concurrency=options.read_concurrency)

    finalized = [histogram.finalize(DEFAULT_QUANTILES) for histogram in histograms]
    records = _channel_records(finalized, extents)

    def merge_stats(attributes):
        stats = attributes.get("stats")
        stats = dict(stats) if isinstance(stats, dict) else {}
        stats[options.base_path] = [record.to_dict() for record in records]
        return {**attributes, "stats": stats}

    def merge_histograms(attributes):
        histograms_by_path = attributes.get("histograms")
        histograms_by_path = dict(histograms_by_path) if isinstance(histograms_by_path, dict) else {}
        histograms_by_path[options.base_path] = [entry.to_dict() for entry in finalized]
        return {**attributes, "histograms": histograms_by_path}

    await update_group_attributes(store, "/", merge_stats)
    await update_group_attributes(store, options.analytics_group_path, merge_histograms)

    logger.info("Built %d level(s) for %s", len(levels), base.path)
    return MipmapBuildResult(levels=levels, stats=finalized)


def build_mipmaps_sync(store: Store, base_path: str, **kwargs) -> MipmapBuildResult:
    """Blocking wrapper around build_mipmaps() for scripts."""
    return asyncio.run(build_mipmaps(store, base_path, **kwargs))
