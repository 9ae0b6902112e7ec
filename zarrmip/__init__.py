from .downsample import downsample_level, scan_level
from .enums import UnsupportedDataTypeError, VolumeDataType
from .geometry import VolumeDimensions, compute_chunk_shape, compute_shard_shape
from .histogram import ChannelStatistics, FinalizedHistogram, StreamingHistogram
from .io import load_level, read_statistics, write_volume
from .layout import (
    VoxelResolution,
    create_root_attributes,
    read_root_attributes,
    validate_root_attributes,
)
from .levels import LevelArray, create_level_array, open_level_array
from .logging import configure_logging, get_logger
from .pyramid import MipmapBuildResult, build_mipmaps, build_mipmaps_sync

__all__ = [
    "build_mipmaps",
    "build_mipmaps_sync",
    "MipmapBuildResult",
    "downsample_level",
    "scan_level",
    "LevelArray",
    "create_level_array",
    "open_level_array",
    "StreamingHistogram",
    "FinalizedHistogram",
    "ChannelStatistics",
    "VolumeDataType",
    "UnsupportedDataTypeError",
    "VolumeDimensions",
    "compute_chunk_shape",
    "compute_shard_shape",
    "VoxelResolution",
    "create_root_attributes",
    "read_root_attributes",
    "validate_root_attributes",
    "write_volume",
    "load_level",
    "read_statistics",
    "configure_logging",
    "get_logger",
]
