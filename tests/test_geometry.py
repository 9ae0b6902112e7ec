"""Tests for chunk and shard geometry planning."""

import math

import pytest

from zarrmip.geometry import (
    DEFAULT_CHUNK_TARGET_BYTES,
    MAX_SHARD_MULTIPLIER,
    AxisRange,
    VolumeDimensions,
    chunk_byte_size,
    chunk_range,
    compute_chunk_counts,
    compute_chunk_shape,
    compute_level_shape,
    compute_shard_shape,
    iter_chunk_coords,
    local_range,
    overlapping_chunks,
)


class TestChunkShape:
    def test_default_budget_fits_uint16(self):
        dims = VolumeDimensions(width=1000, height=1000, depth=100, channels=1)
        assert compute_chunk_shape(dims) == (1, 16, 256, 256)

    def test_halves_x_first(self):
        dims = VolumeDimensions(width=1000, height=1000, depth=100, channels=1)
        assert compute_chunk_shape(dims, bytes_per_value=8) == (1, 16, 256, 64)

    def test_small_volume_is_one_chunk(self):
        dims = VolumeDimensions(width=7, height=5, depth=3, channels=2)
        assert compute_chunk_shape(dims) == (2, 3, 5, 7)

    def test_channels_capped_at_four(self):
        dims = VolumeDimensions(width=8, height=8, depth=8, channels=10)
        assert compute_chunk_shape(dims)[0] == 4

    @pytest.mark.parametrize("bytes_per_value", [1, 2, 4, 8])
    @pytest.mark.parametrize("target_bytes", [64, 1000, 4096, DEFAULT_CHUNK_TARGET_BYTES])
    def test_never_exceeds_budget(self, bytes_per_value, target_bytes):
        dims = VolumeDimensions(width=513, height=300, depth=40, channels=3)
        shape = compute_chunk_shape(dims, bytes_per_value=bytes_per_value, target_bytes=target_bytes)
        assert all(extent >= 1 for extent in shape)
        assert chunk_byte_size(shape, bytes_per_value) <= max(target_bytes, bytes_per_value)

    def test_single_voxel_over_budget(self):
        dims = VolumeDimensions(width=64, height=64, depth=64, channels=2)
        assert compute_chunk_shape(dims, bytes_per_value=8, target_bytes=4) == (1, 1, 1, 1)

    def test_empty_extent_clamps_to_one(self):
        dims = VolumeDimensions(width=0, height=4, depth=4, channels=1)
        assert compute_chunk_shape(dims) == (1, 4, 4, 1)


class TestShardShape:
    def test_default_budget(self):
        assert compute_shard_shape((1, 16, 256, 256)) == (1, 128, 1024, 256)

    @pytest.mark.parametrize(
        "chunk_shape", [(1, 16, 256, 256), (4, 3, 5, 7), (1, 1, 1, 1), (2, 16, 64, 128)]
    )
    @pytest.mark.parametrize("bytes_per_value", [1, 2, 8])
    def test_bounds(self, chunk_shape, bytes_per_value):
        shard = compute_shard_shape(chunk_shape, bytes_per_value=bytes_per_value)
        for chunk_extent, shard_extent in zip(chunk_shape, shard):
            assert chunk_extent <= shard_extent <= chunk_extent * MAX_SHARD_MULTIPLIER
            assert shard_extent % chunk_extent == 0

    def test_budget_already_met(self):
        assert compute_shard_shape((1, 4, 4, 4), bytes_per_value=2, target_bytes=128) == (1, 4, 4, 4)


class TestGridHelpers:
    def test_level_shape_rounds_up(self):
        assert compute_level_shape((2, 5, 1, 8)) == (2, 3, 1, 4)

    def test_chunk_counts(self):
        assert compute_chunk_counts((1, 10, 33, 17), (1, 4, 16, 17)) == (1, 3, 3, 1)

    def test_chunk_range_clips_edge(self):
        assert chunk_range(2, 4, 10) == (8, 10)
        assert chunk_range(0, 4, 10) == (0, 4)

    def test_local_range(self):
        assert local_range(6, 14, 8, 4) == (0, 4)
        assert local_range(6, 10, 8, 4) == (0, 2)
        assert local_range(9, 11, 8, 4) == (1, 3)

    def test_axis_range_size(self):
        assert AxisRange(3, 7).size == 4
        assert AxisRange(7, 3).size == 0

    def test_iter_chunk_coords_order(self):
        coords = list(iter_chunk_coords((1, 2, 1, 3), (1, 1, 1, 2)))
        assert coords == [(0, 0, 0, 0), (0, 0, 0, 1), (0, 1, 0, 0), (0, 1, 0, 1)]

    def test_iter_chunk_coords_covers_grid(self):
        coords = list(iter_chunk_coords((3, 10, 33, 17), (2, 4, 16, 8)))
        assert len(coords) == math.prod((2, 3, 3, 3))
        assert len(set(coords)) == len(coords)

    def test_overlapping_chunks(self):
        ranges = [AxisRange(0, 1), AxisRange(0, 4), AxisRange(3, 9), AxisRange(0, 2)]
        assert overlapping_chunks(ranges, (1, 4, 4, 4)) == [
            (0, 0, 0, 0),
            (0, 0, 1, 0),
            (0, 0, 2, 0),
        ]

    def test_volume_dimensions_from_shape(self):
        dims = VolumeDimensions.from_shape((2, 3, 4, 5))
        assert (dims.channels, dims.depth, dims.height, dims.width) == (2, 3, 4, 5)
