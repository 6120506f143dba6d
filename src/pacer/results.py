"""Session result data structures and serialization.

Hierarchy::

    SessionResult (one benchmarking session)
      → results: list[ResultStats]       (one per spec, in spec order)
          → samples: list[Sample]          (append-only)
          → stats: SummaryStats | None     (None when < 2 samples)
          → differences: row of the ResultMatrix
      → matrix: ResultMatrix

Files produced::

    results.json     — JSON output (names, mean CIs, differences, samples)
    stats.csv        — one row per benchmark with CIs against every other
    raw.csv          — one row per sample (long format)
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from pacer.specs import BenchmarkSpec
from pacer.stats import (
    Difference,
    Horizons,
    MatrixCell,
    ResultMatrix,
    SummaryStats,
    build_result_matrix,
    horizons_resolved,
    summary_stats,
)

log = logging.getLogger("pacer")

CSV_PRECISION = 5


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """One millisecond measurement taken in a given round."""

    millis: float
    round: int


@dataclass
class SampleSet:
    """Accumulated samples for one spec.  Only ever appended to."""

    name: str
    spec: BenchmarkSpec | None = None
    samples: list[Sample] = field(default_factory=list)
    dropped: int = 0  # rounds whose measurement could not be obtained

    def append(self, millis: float, round_index: int) -> None:
        self.samples.append(Sample(millis=millis, round=round_index))

    @property
    def millis(self) -> list[float]:
        return [s.millis for s in self.samples]

    def __len__(self) -> int:
        return len(self.samples)


# ---------------------------------------------------------------------------
# Per-spec results
# ---------------------------------------------------------------------------


@dataclass
class ResultStats:
    """Statistics for one spec plus its row of the result matrix."""

    name: str
    samples: list[float]
    stats: SummaryStats | None
    differences: list[MatrixCell | None] = field(default_factory=list)
    spec: BenchmarkSpec | None = None
    dropped: int = 0

    @property
    def available(self) -> bool:
        return self.stats is not None

    def difference_to(self, baseline: int) -> Difference | None:
        cell = self.differences[baseline]
        return cell.difference if cell is not None else None


def stats_or_none(samples: Sequence[float]) -> SummaryStats | None:
    """Summary stats, or None if there are too few samples to compute them."""
    if len(samples) < 2:
        return None
    return summary_stats(samples)


# ---------------------------------------------------------------------------
# Session result
# ---------------------------------------------------------------------------


@dataclass
class SessionResult:
    """Frozen outcome of one benchmarking session."""

    results: list[ResultStats]
    matrix: ResultMatrix
    horizons: Horizons = field(default_factory=Horizons)
    resolved: bool = False
    hit_timeout: bool = False
    interrupted: bool = False
    rounds: int = 0
    timeout_minutes: float = 0.0

    @property
    def names(self) -> list[str]:
        return [r.name for r in self.results]

    def to_dict(self) -> dict[str, Any]:
        """JSON output: one entry per benchmark, differences in percent."""
        benchmarks = []
        for result in self.results:
            differences: list[dict[str, Any] | None] = []
            for cell in result.differences:
                if cell is None:
                    differences.append(None)
                elif cell.difference is None:
                    differences.append({"absolute": None, "percentChange": None})
                else:
                    diff = cell.difference
                    differences.append(
                        {
                            "absolute": diff.absolute.to_dict(),
                            "percentChange": (
                                {
                                    "low": diff.relative.low * 100,
                                    "high": diff.relative.high * 100,
                                }
                                if diff.relative is not None
                                else None
                            ),
                        }
                    )
            entry: dict[str, Any] = {
                "name": result.name,
                "samples": list(result.samples),
                "mean": result.stats.mean_ci.to_dict() if result.stats else None,
                "differences": differences,
            }
            if result.spec is not None:
                entry["spec"] = result.spec.to_dict()
            if result.dropped:
                entry["droppedSamples"] = result.dropped
            benchmarks.append(entry)
        return {
            "benchmarks": benchmarks,
            "resolved": self.resolved,
            "hitTimeout": self.hit_timeout,
            "interrupted": self.interrupted,
            "rounds": self.rounds,
            "horizons": {
                "absolute": list(self.horizons.absolute),
                "relative": list(self.horizons.relative),
            },
        }


def make_session_result(
    sample_sets: Sequence[SampleSet],
    horizons: Horizons,
    **kwargs: Any,
) -> SessionResult:
    """Recompute every statistic from the accumulated samples."""
    all_stats = [stats_or_none(s.millis) for s in sample_sets]
    matrix = build_result_matrix(all_stats)
    results = [
        ResultStats(
            name=s.name,
            samples=s.millis,
            stats=all_stats[i],
            differences=list(matrix.cells[i]),
            spec=s.spec,
            dropped=s.dropped,
        )
        for i, s in enumerate(sample_sets)
    ]
    return SessionResult(
        results=results,
        matrix=matrix,
        horizons=horizons,
        resolved=horizons_resolved(matrix, horizons),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def format_csv_stats(session: SessionResult) -> str:
    """One row per benchmark: mean CI, then % and ms change vs every other.

    Three header rows name the comparison, the unit, and the bound.
    """
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")

    h1 = ["", "", ""]
    h2 = ["", "ms", ""]
    h3 = ["", "min", "max"]
    for result in session.results:
        h1.extend([f"vs {result.name}", "", "", ""])
        h2.extend(["% change", "", "ms change", ""])
        h3.extend(["min", "max", "min", "max"])
    writer.writerows([h1, h2, h3])

    p = CSV_PRECISION
    for result in session.results:
        row: list[str] = [result.name]
        if result.stats is not None:
            row.extend([f"{result.stats.mean_ci.low:.{p}f}", f"{result.stats.mean_ci.high:.{p}f}"])
        else:
            row.extend(["", ""])
        for cell in result.differences:
            diff = cell.difference if cell is not None else None
            if diff is None:
                row.extend(["", "", "", ""])
                continue
            if diff.relative is not None:
                row.extend(
                    [f"{diff.relative.low * 100:.{p}f}%", f"{diff.relative.high * 100:.{p}f}%"]
                )
            else:
                row.extend(["", ""])
            row.extend([f"{diff.absolute.low:.{p}f}", f"{diff.absolute.high:.{p}f}"])
        writer.writerow(row)
    return output.getvalue()


def format_csv_raw(sample_sets: Sequence[SampleSet]) -> str:
    """Long format: one row per sample (benchmark, round, millis)."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(["benchmark", "round", "millis"])
    for sample_set in sample_sets:
        for sample in sample_set.samples:
            writer.writerow([sample_set.name, sample.round, f"{sample.millis:.6f}"])
    return output.getvalue()


# ---------------------------------------------------------------------------
# I/O functions
# ---------------------------------------------------------------------------


def save_json(path: Path, session: SessionResult) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(session.to_dict(), indent=2) + "\n", encoding="utf-8")
    log.info("Wrote %s", path)


def load_sample_sets(path: Path) -> list[SampleSet]:
    """Load the samples of a JSON output file for re-analysis.

    Rounds are not stored in the JSON output, so samples are numbered in
    file order.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a pacer JSON output.
    """
    if not path.exists():
        raise FileNotFoundError(f"Results file not found: {path}")
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or not isinstance(data.get("benchmarks"), list):
        raise ValueError(f"{path} is not a results file (no 'benchmarks' list)")

    sample_sets: list[SampleSet] = []
    for entry in data["benchmarks"]:
        sample_set = SampleSet(name=str(entry.get("name", "")))
        for idx, millis in enumerate(entry.get("samples", [])):
            sample_set.append(float(millis), idx + 1)
        sample_set.dropped = int(entry.get("droppedSamples", 0))
        sample_sets.append(sample_set)
    return sample_sets
