"""Tests for max-pooling downsampling between levels."""

import numpy as np
import pytest
import zarr.storage
from numpy.testing import assert_array_equal

from zarrmip.downsample import downsample_level, scan_level
from zarrmip.geometry import compute_level_shape
from zarrmip.histogram import ChannelExtent, StreamingHistogram
from zarrmip.io import write_volume
from zarrmip.levels import create_level_array


async def _downsample(store, data, chunk_target_bytes=64, shard_target_bytes=256, **kwargs):
    source = await write_volume(
        store, "/0", data, chunk_target_bytes=chunk_target_bytes, shard_target_bytes=shard_target_bytes
    )
    target = await create_level_array(
        store,
        "/mipmaps/0/level-1",
        compute_level_shape(source.shape),
        data.dtype,
        chunk_target_bytes=chunk_target_bytes,
        shard_target_bytes=shard_target_bytes,
    )
    await downsample_level(source, target, **kwargs)
    return np.asarray(await target.array.getitem(...))


class TestDownsampleLevel:
    @pytest.mark.asyncio
    async def test_single_voxel_is_maximum(self, memory_store, ramp_volume):
        result = await _downsample(memory_store, ramp_volume)
        assert result.shape == (1, 1, 1, 1)
        assert result[0, 0, 0, 0] == 70

    @pytest.mark.asyncio
    async def test_matches_reference_across_chunks(self, memory_store, random_volume, max_pool):
        result = await _downsample(memory_store, random_volume)
        assert result.shape == (2, 4, 7, 6)
        assert_array_equal(result, max_pool(random_volume))

    @pytest.mark.asyncio
    async def test_negative_values_beat_sentinel(self, memory_store):
        data = np.full((1, 3, 3, 3), -7, dtype=np.int8)
        result = await _downsample(memory_store, data, chunk_target_bytes=8)
        assert_array_equal(result, np.full((1, 2, 2, 2), -7, dtype=np.int8))

    @pytest.mark.asyncio
    async def test_float_volume(self, memory_store, max_pool):
        rng = np.random.default_rng(3)
        data = rng.normal(size=(1, 9, 5, 6)).astype(np.float32) - 10
        result = await _downsample(memory_store, data, chunk_target_bytes=128)
        assert result.dtype == np.float32
        assert_array_equal(result, max_pool(data))

    @pytest.mark.asyncio
    async def test_single_extent_axis(self, memory_store, max_pool):
        data = np.arange(12, dtype=np.uint8).reshape(1, 1, 3, 4)
        result = await _downsample(memory_store, data)
        assert result.shape == (1, 1, 2, 2)
        assert_array_equal(result, max_pool(data))

    @pytest.mark.asyncio
    async def test_read_concurrency_gives_same_output(self, memory_store, random_volume):
        serial = await _downsample(memory_store, random_volume)
        windowed = await _downsample(zarr.storage.MemoryStore(), random_volume, read_concurrency=4)
        assert_array_equal(windowed, serial)

    @pytest.mark.asyncio
    async def test_writes_each_target_shard_once(self, counting_store, max_pool):
        data = (np.arange(16**3, dtype=np.uint16) + 1).reshape(1, 16, 16, 16)
        source = await write_volume(counting_store, "/0", data)
        # 64 inner chunks of (1, 8, 1, 1) bundled into 8 shards
        target = await create_level_array(
            counting_store,
            "/mipmaps/0/level-1",
            (1, 8, 8, 8),
            np.uint16,
            chunk_target_bytes=16,
            shard_target_bytes=1024,
        )
        assert target.chunk_shape == (1, 8, 1, 1)
        assert np.prod(target.chunk_counts) > np.prod(target.shard_counts)
        counting_store.set_counts.clear()

        await downsample_level(source, target)

        shard_keys = {target.shard_key(coords) for coords in np.ndindex(*target.shard_counts)}
        assert dict(counting_store.set_counts) == dict.fromkeys(shard_keys, 1)
        assert_array_equal(np.asarray(await target.array.getitem(...)), max_pool(data))

    @pytest.mark.asyncio
    async def test_shard_larger_than_level(self, memory_store, random_volume, max_pool):
        result = await _downsample(memory_store, random_volume, chunk_target_bytes=64, shard_target_bytes=1 << 20)
        assert_array_equal(result, max_pool(random_volume))

    @pytest.mark.asyncio
    async def test_feeds_statistics_with_every_source_voxel(self, memory_store, random_volume):
        # Shards of several chunks must not feed any source voxel twice
        histograms = [StreamingHistogram(bins=64) for _ in range(2)]
        extents = [ChannelExtent() for _ in range(2)]
        await _downsample(memory_store, random_volume, histograms=histograms, extents=extents)

        voxels = random_volume[0].size
        for channel in range(2):
            assert histograms[channel].total == voxels
            assert histograms[channel].counts.sum() == voxels
            assert extents[channel].minimum == random_volume[channel].min()
            assert extents[channel].maximum == random_volume[channel].max()


class TestScanLevel:
    @pytest.mark.asyncio
    async def test_scan_counts_all_voxels(self, memory_store, random_volume):
        source = await write_volume(memory_store, "/0", random_volume, chunk_target_bytes=64)
        histograms = [StreamingHistogram(bins=16) for _ in range(2)]
        extents = [ChannelExtent() for _ in range(2)]
        await scan_level(source, histograms, extents, read_concurrency=2)

        for channel in range(2):
            assert histograms[channel].total == random_volume[channel].size
            assert extents[channel].minimum == random_volume[channel].min()
            assert extents[channel].maximum == random_volume[channel].max()

    @pytest.mark.asyncio
    async def test_scan_with_multichannel_chunks(self, memory_store):
        data = np.stack([np.full((2, 2, 2), value, dtype=np.uint8) for value in (1, 5, 9)])
        source = await write_volume(memory_store, "/0", data)
        assert source.chunk_shape[0] == 3
        extents = [ChannelExtent() for _ in range(3)]
        await scan_level(source, None, extents)
        assert [(extent.minimum, extent.maximum) for extent in extents] == [(1, 1), (5, 5), (9, 9)]
