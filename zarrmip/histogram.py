"""
Streaming intensity statistics for pyramid builds.

This module provides a fixed-bin histogram whose covered value range grows
as new extremes arrive, so per-channel statistics can be accumulated chunk by
chunk without knowing the value range in advance. Existing counts are
re-bucketed on every range expansion; this is lossy with respect to bin
placement but always preserves the total count.

Key Classes:
    StreamingHistogram: Per-channel accumulator with quantile extraction
    ChannelExtent: Running minimum/maximum of observed values
    HistogramSummary, FinalizedHistogram, ChannelStatistics: finalized records
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Sequence

import numpy as np
from attrs import define, field

DEFAULT_HISTOGRAM_BINS = 1024
DEFAULT_QUANTILES = (0.01, 0.05, 0.1, 0.25, 0.5, 0.75, 0.9, 0.95, 0.99)


def quantile_label(quantile: float) -> str:
    """Attribute key of a quantile, e.g. ``0.05 -> "p5"``."""
    return f"p{int(round(quantile * 100))}"


@define
class HistogramSummary:
    """Histogram counts over ``bins`` equal bins spanning ``[min, max]``."""

    bins: int
    min: float
    max: float
    counts: List[int] = field(factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"bins": self.bins, "min": self.min, "max": self.max, "counts": list(self.counts)}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> HistogramSummary:
        return cls(
            bins=int(raw["bins"]),
            min=float(raw["min"]),
            max=float(raw["max"]),
            counts=[int(count) for count in raw.get("counts", [])],
        )


@define
class FinalizedHistogram:
    """Result of StreamingHistogram.finalize()."""

    min: float
    max: float
    histogram: HistogramSummary
    quantiles: Dict[str, float] = field(factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "histogram": self.histogram.to_dict(),
            "quantiles": dict(self.quantiles),
        }


@define
class ChannelStatistics:
    """Per-channel statistics persisted in the root group attributes.

    Attributes:
        channel (int): Channel index
        min (float): Observed minimum (histogram minimum if nothing observed)
        max (float): Observed maximum (histogram maximum if nothing observed)
        histogram (HistogramSummary): Finalized histogram
        quantiles (Dict[str, float]): Quantile values keyed ``p1``, ``p5``, ...
    """

    channel: int
    min: float
    max: float
    histogram: HistogramSummary
    quantiles: Dict[str, float] = field(factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "min": self.min,
            "max": self.max,
            "histogram": self.histogram.to_dict(),
            "quantiles": dict(self.quantiles),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> ChannelStatistics:
        return cls(
            channel=int(raw["channel"]),
            min=float(raw["min"]),
            max=float(raw["max"]),
            histogram=HistogramSummary.from_dict(raw["histogram"]),
            quantiles={key: float(value) for key, value in raw.get("quantiles", {}).items()},
        )


@define
class ChannelExtent:
    """Running minimum and maximum of the values seen for one channel.

    NaN is skipped rather than poisoning the extent, so a channel mixing NaN
    with numbers still reports the range of its numbers. Infinities are
    kept. Before any update the extent is ``(+inf, -inf)``.
    """

    minimum: float = math.inf
    maximum: float = -math.inf

    def update(self, values: np.ndarray) -> None:
        values = np.asarray(values)
        if values.dtype.kind == "f":
            values = values[~np.isnan(values)]
        if values.size == 0:
            return
        self.minimum = min(self.minimum, float(values.min()))
        self.maximum = max(self.maximum, float(values.max()))

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.minimum) and math.isfinite(self.maximum)


class StreamingHistogram:
    """
    Fixed-bin histogram with a range that expands as values arrive.

    Bin ``i`` of ``bins`` covers the fractional position ``i / (bins - 1)``
    of ``[minimum, maximum]``. When a value falls outside the current range,
    the range is widened and every occupied bin is moved wholesale to the bin
    of its representative value under the new range.

    Args:
        bins: Number of bins (at least 2)

    Examples:
        >>> histogram = StreamingHistogram(bins=256)
        >>> histogram.update(np.arange(1000))
        >>> histogram.finalize([0.5]).quantiles["p50"]
    """

    def __init__(self, bins: int = DEFAULT_HISTOGRAM_BINS):
        if bins < 2:
            raise ValueError(f"Histogram needs at least 2 bins, got {bins}")
        self.bins = int(bins)
        self.counts = np.zeros(self.bins, dtype=np.int64)
        self.minimum = math.inf
        self.maximum = -math.inf
        self.total = 0

    def __repr__(self) -> str:
        return (
            f"StreamingHistogram(bins={self.bins}, total={self.total}, "
            f"range=[{self.minimum}, {self.maximum}])"
        )

    @property
    def initialized(self) -> bool:
        return math.isfinite(self.minimum) and math.isfinite(self.maximum)

    def add(self, value: float) -> None:
        """Count a single value. Non-finite values are ignored."""
        value = float(value)
        if not math.isfinite(value):
            return
        if not self.initialized:
            self.minimum = value
            self.maximum = value + 1
        elif value < self.minimum or value > self.maximum:
            self._expand_range(value, value)

        self.counts[int(self._bin_indices(np.array([value]))[0])] += 1
        self.total += 1

    def update(self, values) -> None:
        """
        Count a batch of values.

        The range is widened at most once per batch, to cover the batch's
        finite extremes, before all values are binned.

        Args:
            values: Array-like of any shape; non-finite entries are dropped
        """
        values = np.asarray(values, dtype=np.float64).ravel()
        values = values[np.isfinite(values)]
        if values.size == 0:
            return

        low = float(values.min())
        high = float(values.max())
        if not self.initialized:
            self.minimum = low
            self.maximum = high if high != low else low + 1
        elif low < self.minimum or high > self.maximum:
            self._expand_range(low, high)

        self.counts += np.bincount(self._bin_indices(values), minlength=self.bins)
        self.total += int(values.size)

    def _expand_range(self, low: float, high: float) -> None:
        old_minimum = self.minimum
        old_maximum = self.maximum
        new_minimum = min(old_minimum, low)
        new_maximum = max(old_maximum, high)
        self.minimum = new_minimum
        self.maximum = new_maximum if new_maximum != new_minimum else new_minimum + 1

        occupied = np.nonzero(self.counts)[0]
        representatives = old_minimum + (occupied / (self.bins - 1)) * (
            old_maximum - old_minimum
        )
        rebinned = np.zeros(self.bins, dtype=np.int64)
        np.add.at(rebinned, self._bin_indices(representatives), self.counts[occupied])
        self.counts = rebinned

    def _bin_indices(self, values: np.ndarray) -> np.ndarray:
        span = self.maximum - self.minimum
        if span <= 0:
            return np.zeros(values.shape, dtype=np.intp)
        normalized = (values - self.minimum) / span
        indices = np.floor(normalized * (self.bins - 1))
        return np.clip(indices, 0, self.bins - 1).astype(np.intp)

    def finalize(self, target_quantiles: Sequence[float] = DEFAULT_QUANTILES) -> FinalizedHistogram:
        """
        Summarize the histogram and extract quantiles.

        With no samples the result is ``min=0, max=1`` and every quantile is
        0. Otherwise quantile ``q`` is the position of the first bin whose
        cumulative count reaches ``q * total``, mapped linearly into
        ``[minimum, maximum]``; quantiles never reached take ``maximum``.

        Args:
            target_quantiles: Fractions in ``[0, 1]``

        Returns:
            FinalizedHistogram with quantiles keyed by quantile_label()
        """
        initialized = self.total > 0 and self.initialized
        minimum = self.minimum if initialized else 0.0
        maximum = self.maximum if initialized else 1.0
        histogram = HistogramSummary(
            bins=self.bins,
            min=minimum,
            max=maximum,
            counts=self.counts.tolist(),
        )

        if not initialized:
            quantiles = {quantile_label(q): 0.0 for q in target_quantiles}
            return FinalizedHistogram(min=minimum, max=maximum, histogram=histogram, quantiles=quantiles)

        cumulative = np.cumsum(self.counts)
        quantiles = {}
        for q in target_quantiles:
            index = int(np.searchsorted(cumulative, q * self.total, side="left"))
            if index >= self.bins:
                quantiles[quantile_label(q)] = self.maximum
                continue
            fraction = index / (self.bins - 1)
            quantiles[quantile_label(q)] = self.minimum + fraction * (self.maximum - self.minimum)

        return FinalizedHistogram(min=minimum, max=maximum, histogram=histogram, quantiles=quantiles)
