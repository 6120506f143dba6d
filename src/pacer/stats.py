"""Statistics for comparing benchmark sample sets.

Provides summary statistics with Student-t confidence intervals of the
mean, the pairwise difference of two sample sets (absolute and
relative), the full N×N result matrix, and the horizon stopping rule.
All functions are pure and safe to call concurrently.

The normal approximation is deliberately not used for the critical
value: early in sampling the sample counts are small and it would
understate interval widths.

References:
    Sampling distribution of the mean:
        http://onlinestatbook.com/2/sampling_distributions/samp_dist_mean.html
    Difference of means:
        http://www.stat.yale.edu/Courses/1997-98/101/meancomp.htm
    Relative difference (first-order error propagation):
        http://blog.analytics-toolkit.com/2018/confidence-intervals-p-values-percent-change-relative-difference/
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Sequence

from scipy.stats import t as t_dist  # type: ignore[import-untyped]

from pacer.errors import InvalidSampleSize

CONFIDENCE = 0.95


# ---------------------------------------------------------------------------
# Student's t distribution
# ---------------------------------------------------------------------------


@lru_cache(maxsize=4096)
def t_quantile(p: float, df: float) -> float:
    """Inverse CDF of Student's t distribution.

    Cached since the sampler asks for the same (p, df) pairs every round.

    Raises:
        ValueError: If ``p`` is not in (0, 1) or ``df`` is not positive.
    """
    if not 0.0 < p < 1.0:
        raise ValueError(f"Quantile probability must be in (0, 1), got {p}")
    if df <= 0:
        raise ValueError(f"Degrees of freedom must be positive, got {df}")
    return float(t_dist.ppf(p, df))


# ---------------------------------------------------------------------------
# Confidence intervals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfidenceInterval:
    """A closed interval [low, high]."""

    low: float
    high: float

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.low) and math.isfinite(self.high)

    @property
    def width(self) -> float:
        return self.high - self.low

    @property
    def center(self) -> float:
        return (self.low + self.high) / 2.0

    def to_dict(self) -> dict[str, float]:
        return {"low": self.low, "high": self.high}


def interval_contains(interval: ConfidenceInterval, value: float) -> bool:
    """Return whether the interval contains the value (bounds inclusive)."""
    return interval.contains(value)


@dataclass(frozen=True)
class _Distribution:
    mean: float
    variance: float


def _confidence_interval_95(dist: _Distribution, size: int) -> ConfidenceInterval:
    t = t_quantile(1 - (1 - CONFIDENCE) / 2, size - 1)
    margin = t * math.sqrt(dist.variance)
    return ConfidenceInterval(low=dist.mean - margin, high=dist.mean + margin)


def _sampling_distribution_of_the_mean(dist: _Distribution, size: int) -> _Distribution:
    # Error shrinks as sample size grows.
    return _Distribution(mean=dist.mean, variance=dist.variance / size)


# ---------------------------------------------------------------------------
# Summary statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SummaryStats:
    """Summary statistics for one accumulated sample set."""

    size: int
    mean: float
    mean_ci: ConfidenceInterval
    variance: float
    standard_deviation: float
    relative_standard_deviation: float  # coefficient of variation

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "mean": self.mean,
            "meanCI": self.mean_ci.to_dict(),
            "variance": self.variance,
            "standardDeviation": self.standard_deviation,
            "relativeStandardDeviation": self.relative_standard_deviation,
        }


def summary_stats(samples: Sequence[float]) -> SummaryStats:
    """Compute summary statistics for a sample set.

    Variance uses Bessel's correction (divisor n-1), so at least two
    samples are required.

    Raises:
        InvalidSampleSize: If fewer than two samples are given.
    """
    size = len(samples)
    if size < 2:
        raise InvalidSampleSize(f"Need at least 2 samples for summary statistics, got {size}")

    mean = math.fsum(samples) / size
    variance = math.fsum((x - mean) ** 2 for x in samples) / (size - 1)
    std_dev = math.sqrt(variance)
    if mean != 0:
        rsd = std_dev / mean
    else:
        rsd = 0.0 if std_dev == 0 else float("inf")

    return SummaryStats(
        size=size,
        mean=mean,
        mean_ci=_confidence_interval_95(
            _sampling_distribution_of_the_mean(_Distribution(mean, variance), size), size
        ),
        variance=variance,
        standard_deviation=std_dev,
        relative_standard_deviation=rsd,
    )


# ---------------------------------------------------------------------------
# Pairwise differences
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Difference:
    """Confidence intervals on how much a candidate differs from a baseline.

    ``absolute`` is in milliseconds (candidate - baseline).  ``relative``
    is a fraction of the baseline mean, or None when the baseline mean
    is zero and the relative difference is unavailable.
    """

    absolute: ConfidenceInterval
    relative: ConfidenceInterval | None

    @property
    def relative_available(self) -> bool:
        return self.relative is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "absolute": self.absolute.to_dict(),
            "relative": self.relative.to_dict() if self.relative is not None else None,
        }


def compute_difference(candidate: SummaryStats, baseline: SummaryStats) -> Difference:
    """Compute the difference of ``candidate`` relative to ``baseline``.

    Both inputs are modelled as sampling distributions of the mean and
    assumed independent.  Degrees of freedom come from the smaller of the
    two sample sets, which widens the interval when counts differ.
    """
    a = _sampling_distribution_of_the_mean(
        _Distribution(baseline.mean, baseline.variance), baseline.size
    )
    b = _sampling_distribution_of_the_mean(
        _Distribution(candidate.mean, candidate.variance), candidate.size
    )
    min_size = min(candidate.size, baseline.size)

    absolute = _Distribution(mean=b.mean - a.mean, variance=a.variance + b.variance)

    relative_ci: ConfidenceInterval | None = None
    if a.mean != 0:
        relative = _Distribution(
            mean=(b.mean - a.mean) / a.mean,
            variance=(a.variance * b.mean**2 + b.variance * a.mean**2) / a.mean**4,
        )
        relative_ci = _confidence_interval_95(relative, min_size)

    return Difference(
        absolute=_confidence_interval_95(absolute, min_size),
        relative=relative_ci,
    )


# ---------------------------------------------------------------------------
# Result matrix
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatrixCell:
    """One off-diagonal cell of the result matrix.

    ``difference`` is None when either side has no usable statistics.
    """

    candidate: int
    baseline: int
    difference: Difference | None

    @property
    def available(self) -> bool:
        return self.difference is not None


@dataclass(frozen=True)
class ResultMatrix:
    """N×N table of pairwise differences.

    ``cells[i][j]`` is spec i relative to baseline spec j; diagonal cells
    are None.
    """

    cells: tuple[tuple[MatrixCell | None, ...], ...] = field(default_factory=tuple)

    @property
    def size(self) -> int:
        return len(self.cells)

    def cell(self, candidate: int, baseline: int) -> MatrixCell | None:
        return self.cells[candidate][baseline]

    def against(self, baseline: int) -> list[MatrixCell | None]:
        """Every spec's difference with ``baseline`` as the baseline."""
        return [row[baseline] for row in self.cells]

    def iter_cells(self) -> list[MatrixCell]:
        """All off-diagonal cells in row-major order."""
        return [cell for row in self.cells for cell in row if cell is not None]


def build_result_matrix(all_stats: Sequence[SummaryStats | None]) -> ResultMatrix:
    """Compare every spec against every other spec.

    A None entry (a spec with too few samples) makes every cell in its
    row and column unavailable rather than failing the whole matrix.
    """
    rows: list[tuple[MatrixCell | None, ...]] = []
    for i, candidate in enumerate(all_stats):
        row: list[MatrixCell | None] = []
        for j, baseline in enumerate(all_stats):
            if i == j:
                row.append(None)
                continue
            diff = None
            if candidate is not None and baseline is not None:
                diff = compute_difference(candidate, baseline)
            row.append(MatrixCell(candidate=i, baseline=j, difference=diff))
        rows.append(tuple(row))
    return ResultMatrix(cells=tuple(rows))


# ---------------------------------------------------------------------------
# Horizons
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Horizons:
    """Difference thresholds the stopping rule must clear.

    ``absolute`` values are milliseconds; ``relative`` values are
    fractions (0.01 == 1%).
    """

    absolute: tuple[float, ...] = ()
    relative: tuple[float, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.absolute or self.relative)


def horizons_resolved(matrix: ResultMatrix, horizons: Horizons) -> bool:
    """Return whether every difference interval clears every horizon.

    For example, given the horizons 0 and 1::

           <--->                   true
               <--->               false
                   <--->           true
                       <--->       false
                           <--->   true
               <----------->       false

         |-------|-------|-------| ms difference
        -1       0       1       2

    Unavailable cells and intervals with non-finite bounds can never be
    resolved.
    """
    for cell in matrix.iter_cells():
        diff = cell.difference
        if diff is None or not diff.absolute.is_finite:
            return False
        for horizon in horizons.absolute:
            if diff.absolute.contains(horizon):
                return False
        for horizon in horizons.relative:
            if diff.relative is None or not diff.relative.is_finite:
                return False
            if diff.relative.contains(horizon):
                return False
    return True


# ---------------------------------------------------------------------------
# Extremes
# ---------------------------------------------------------------------------


def find_fastest(all_stats: Sequence[SummaryStats | None]) -> int | None:
    """Index of the spec with the lowest mean, ignoring unavailable stats."""
    candidates = [(s.mean, i) for i, s in enumerate(all_stats) if s is not None]
    return min(candidates)[1] if candidates else None


def find_slowest(all_stats: Sequence[SummaryStats | None]) -> int | None:
    """Index of the spec with the highest mean, ignoring unavailable stats."""
    candidates = [(s.mean, -i) for i, s in enumerate(all_stats) if s is not None]
    return -max(candidates)[1] if candidates else None
