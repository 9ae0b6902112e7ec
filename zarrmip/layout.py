"""Root group attributes describing a zarrmip dataset.

The root ``zarr.json`` of a dataset carries a small document:

    {
        "layout": "zarrmip.zarr",
        "version": 1,
        "axes": ["c", "z", "y", "x"],
        "voxelSize": {"unit": "um", "values": [x, y, z]},
        "channels": [{"label": "DAPI"}, ...],
        "stats": {"/0": {"min": 0, "max": 4095}, ...}
    }

Readers are lenient: older datasets store ``voxel_size``/``voxel_size_unit``,
plain-string channel labels and a stats list indexed by volume number, and a
pyramid build stores per-channel record lists under ``stats``. All of these
normalize to the same NormalizedLayoutMetadata.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from attrs import define, field
from zarr.abc.store import Store

from .store import update_group_attributes

LAYOUT_NAME = "zarrmip.zarr"
LAYOUT_VERSION = 1
DEFAULT_VOLUME_AXES = ("c", "z", "y", "x")


@define
class VoxelResolution:
    """Physical voxel size.

    Attributes:
        x, y, z (float): Voxel spacing along each axis
        unit (str): Spatial unit, e.g. "um"
        correct_anisotropy (bool): Whether viewers should rescale anisotropic voxels
    """

    x: float
    y: float
    z: float
    unit: str
    correct_anisotropy: bool = False


@define
class VolumeStatistics:
    """Intensity range of one stored volume."""

    min: float
    max: float

    def to_dict(self) -> Dict[str, float]:
        return {"min": self.min, "max": self.max}


@define
class NormalizedLayoutMetadata:
    axes: List[str]
    voxel_resolution: Optional[VoxelResolution]
    channel_labels: List[str]
    stats: Dict[str, VolumeStatistics] = field(factory=dict)


@define
class LayoutValidationResult:
    errors: List[str] = field(factory=list)
    warnings: List[str] = field(factory=list)


def get_volume_array_path(index: int) -> str:
    """Path of the ``index``-th stored volume, e.g. ``"/0"``."""
    if not isinstance(index, (int, float)) or not math.isfinite(index) or index <= 0:
        index = 0
    return f"/{int(index)}"


def _parse_axes(raw: Any) -> List[str]:
    if not isinstance(raw, (list, tuple)):
        return list(DEFAULT_VOLUME_AXES)
    axes = [axis for axis in raw if axis in DEFAULT_VOLUME_AXES]
    if len(axes) != len(DEFAULT_VOLUME_AXES):
        return list(DEFAULT_VOLUME_AXES)
    return axes


def _is_voxel_triplet(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) == 3
        and all(
            isinstance(entry, (int, float)) and not isinstance(entry, bool) and math.isfinite(entry)
            for entry in value
        )
    )


def _parse_voxel_resolution(raw: Any) -> Optional[VoxelResolution]:
    if not isinstance(raw, Mapping):
        return None

    voxel_size = raw.get("voxelSize")
    if isinstance(voxel_size, Mapping) and _is_voxel_triplet(voxel_size.get("values")) and voxel_size.get("unit"):
        x, y, z = voxel_size["values"]
        return VoxelResolution(x=x, y=y, z=z, unit=voxel_size["unit"])

    # Older datasets
    if _is_voxel_triplet(raw.get("voxel_size")) and raw.get("voxel_size_unit"):
        x, y, z = raw["voxel_size"]
        return VoxelResolution(x=x, y=y, z=z, unit=raw["voxel_size_unit"])

    return None


def _normalize_channel_labels(channels: Any, expected_count: Optional[int] = None) -> List[str]:
    if isinstance(channels, (list, tuple)):
        if channels and all(isinstance(entry, str) for entry in channels):
            return list(channels)
        labels = [
            entry["label"]
            for entry in channels
            if isinstance(entry, Mapping) and isinstance(entry.get("label"), str)
        ]
        if labels:
            return labels

    return [f"Channel {index + 1}" for index in range(expected_count or 0)]


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _parse_volume_statistics(value: Any) -> Optional[VolumeStatistics]:
    if isinstance(value, VolumeStatistics):
        return value
    if isinstance(value, Mapping):
        minimum, maximum = _as_number(value.get("min")), _as_number(value.get("max"))
        if minimum is not None and maximum is not None:
            return VolumeStatistics(min=minimum, max=maximum)
        return None
    # Per-channel records written by a pyramid build
    if isinstance(value, (list, tuple)):
        records = [_parse_volume_statistics(entry) for entry in value]
        records = [record for record in records if record is not None]
        if records:
            return VolumeStatistics(
                min=min(record.min for record in records),
                max=max(record.max for record in records),
            )
    return None


def _normalize_stats(stats: Any, expected_count: Optional[int] = None) -> Dict[str, VolumeStatistics]:
    normalized: Dict[str, VolumeStatistics] = {}
    if isinstance(stats, Mapping):
        for path, value in stats.items():
            parsed = _parse_volume_statistics(value)
            if parsed is not None:
                normalized[path] = parsed
    elif isinstance(stats, (list, tuple)):
        for index, value in enumerate(stats):
            parsed = _parse_volume_statistics(value)
            if parsed is not None:
                normalized[get_volume_array_path(index)] = parsed
    if normalized:
        return normalized

    return {
        get_volume_array_path(index): VolumeStatistics(min=0, max=1)
        for index in range(expected_count or 0)
    }


def create_root_attributes(
    axes: Optional[Sequence[str]] = None,
    voxel_resolution: Optional[VoxelResolution] = None,
    channel_labels: Optional[Sequence[str]] = None,
    stats: Union[Mapping[str, Any], Sequence[Any], None] = None,
) -> Dict[str, Any]:
    """
    Build the root attribute document of a dataset.

    Args:
        axes: Axis order (anything other than a permutation of c, z, y, x
            falls back to the default order)
        voxel_resolution: Physical voxel size, omitted when None
        channel_labels: One label per channel
        stats: Per-volume statistics keyed by array path, or a list indexed
            by volume number

    Returns:
        JSON-serializable attribute dictionary
    """
    attributes: Dict[str, Any] = {
        "layout": LAYOUT_NAME,
        "version": LAYOUT_VERSION,
        "axes": _parse_axes(list(axes) if axes is not None else list(DEFAULT_VOLUME_AXES)),
    }
    if voxel_resolution is not None:
        attributes["voxelSize"] = {
            "unit": voxel_resolution.unit,
            "values": [voxel_resolution.x, voxel_resolution.y, voxel_resolution.z],
        }
    if channel_labels is not None:
        attributes["channels"] = [{"label": label} for label in channel_labels]
    normalized = _normalize_stats(stats, len(channel_labels) if channel_labels is not None else None)
    attributes["stats"] = {path: entry.to_dict() for path, entry in normalized.items()}
    return attributes


def read_root_attributes(
    raw: Any,
    expected_volumes: Optional[int] = None,
    fallback_voxel_resolution: Optional[VoxelResolution] = None,
) -> NormalizedLayoutMetadata:
    """
    Normalize a root attribute document, current or legacy.

    Args:
        raw: Decoded attributes (anything; non-mappings yield defaults)
        expected_volumes: Number of volumes used to synthesize default
            channel labels and statistics when none are stored
        fallback_voxel_resolution: Used when no voxel size is stored

    Returns:
        NormalizedLayoutMetadata
    """
    attributes = raw if isinstance(raw, Mapping) else {}
    return NormalizedLayoutMetadata(
        axes=_parse_axes(attributes.get("axes")),
        voxel_resolution=_parse_voxel_resolution(attributes) or fallback_voxel_resolution,
        channel_labels=_normalize_channel_labels(attributes.get("channels"), expected_volumes),
        stats=_normalize_stats(attributes.get("stats"), expected_volumes),
    )


def validate_root_attributes(raw: Any) -> LayoutValidationResult:
    """Report problems with a root attribute document without raising."""
    result = LayoutValidationResult()
    if not isinstance(raw, Mapping):
        result.errors.append("Root attributes are missing or unreadable.")
        return result

    version = raw.get("version")
    if version is not None and version != LAYOUT_VERSION:
        result.warnings.append(
            f"Unexpected layout version: {version}. Proceeding with compatibility defaults."
        )

    axes = raw.get("axes")
    if axes is not None and (
        not isinstance(axes, (list, tuple)) or sorted(axes) != sorted(DEFAULT_VOLUME_AXES)
    ):
        result.warnings.append("Axes definition is invalid. Falling back to c-zyx ordering.")

    if _parse_voxel_resolution(raw) is None:
        result.warnings.append(
            "Voxel size metadata missing or invalid; viewer will rely on provided launch settings."
        )

    if not _normalize_stats(raw.get("stats")):
        result.warnings.append("No per-volume statistics found; defaults will be applied.")

    return result


async def write_root_attributes(store: Store, attributes: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge a root attribute document into the root group of ``store``.

    Existing keys not present in ``attributes`` (for example statistics of a
    previous build) are kept; ``stats`` entries are merged per path.
    """

    def merge(existing: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**existing, **attributes}
        existing_stats = existing.get("stats")
        if isinstance(existing_stats, dict) and isinstance(attributes.get("stats"), Mapping):
            merged["stats"] = {**existing_stats, **attributes["stats"]}
        return merged

    return await update_group_attributes(store, "/", merge)
