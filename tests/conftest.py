import collections

import numpy as np
import pytest
import zarr.storage


class CountingMemoryStore(zarr.storage.MemoryStore):
    """MemoryStore that records how many times each key is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.set_counts = collections.Counter()

    async def set(self, key, value, *args, **kwargs):
        self.set_counts[key] += 1
        await super().set(key, value, *args, **kwargs)


@pytest.fixture
def memory_store():
    """Fresh in-memory Zarr store."""
    return zarr.storage.MemoryStore()


@pytest.fixture
def counting_store():
    """Fresh in-memory Zarr store counting writes per key."""
    return CountingMemoryStore()


@pytest.fixture
def ramp_volume():
    """Single-channel 2x2x2 volume holding 0, 10, ..., 70 in C order."""
    return (np.arange(8, dtype=np.uint16) * 10).reshape(1, 2, 2, 2)


@pytest.fixture
def random_volume():
    """Two-channel int16 volume with odd spatial extents and negative values."""
    rng = np.random.default_rng(42)
    return rng.integers(-1000, 1000, size=(2, 7, 13, 11), dtype=np.int16)


def _reference_max_pool(data):
    channels, depth, height, width = data.shape
    padded_shape = (channels, depth + depth % 2, height + height % 2, width + width % 2)
    low = -np.inf if data.dtype.kind == "f" else np.iinfo(data.dtype).min
    padded = np.full(padded_shape, low, dtype=data.dtype)
    padded[:, :depth, :height, :width] = data
    pooled = padded.reshape(
        channels, padded_shape[1] // 2, 2, padded_shape[2] // 2, 2, padded_shape[3] // 2, 2
    )
    return pooled.max(axis=(2, 4, 6))


@pytest.fixture
def max_pool():
    """In-memory 2x max-pool over z, y, x; odd edges pool what exists."""
    return _reference_max_pool
