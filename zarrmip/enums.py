"""Enumeration classes for zarrmip volume data types."""

from __future__ import annotations

from enum import Enum

import numpy as np


class UnsupportedDataTypeError(TypeError):
    """Raised when a volume uses an element type outside VolumeDataType."""

    pass


class VolumeDataType(Enum):
    """Element types a pyramid level may be stored with.

    Each member knows its byte width, the sentinel used to mark output voxels
    that have not been written yet, and the fill value given to voxels that
    never receive a source value.

    Attributes:
        INT8, INT16, INT32: Signed integers
        UINT8, UINT16, UINT32: Unsigned integers
        FLOAT32, FLOAT64: IEEE floating point
    """

    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    FLOAT32 = "float32"
    FLOAT64 = "float64"

    @classmethod
    def from_dtype(cls, dtype) -> VolumeDataType:
        """Look up the member matching a numpy dtype (or dtype-like).

        Raises:
            UnsupportedDataTypeError: If the dtype is not one of the members
        """
        try:
            name = np.dtype(dtype).name
        except TypeError as exc:
            raise UnsupportedDataTypeError(f"Unsupported data type: {dtype!r}") from exc
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedDataTypeError(f"Unsupported data type: {name}") from None

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @property
    def bytes_per_value(self) -> int:
        return self.numpy_dtype.itemsize

    @property
    def sentinel(self) -> float:
        """Placeholder marking an output voxel as not yet written."""
        match self:
            case VolumeDataType.INT8 | VolumeDataType.INT16 | VolumeDataType.INT32:
                return int(np.iinfo(self.numpy_dtype).min)
            case VolumeDataType.UINT8 | VolumeDataType.UINT16 | VolumeDataType.UINT32:
                return 0
            case VolumeDataType.FLOAT32 | VolumeDataType.FLOAT64:
                return float("-inf")
            case _:
                raise UnsupportedDataTypeError(f"Unsupported data type: {self!r}")

    @property
    def fill_value(self) -> float:
        """Value given to output voxels that no source voxel reached."""
        match self:
            case (
                VolumeDataType.INT8
                | VolumeDataType.INT16
                | VolumeDataType.INT32
                | VolumeDataType.UINT8
                | VolumeDataType.UINT16
                | VolumeDataType.UINT32
            ):
                return 0
            case VolumeDataType.FLOAT32 | VolumeDataType.FLOAT64:
                return 0.0
            case _:
                raise UnsupportedDataTypeError(f"Unsupported data type: {self!r}")
