"""Terminal display formatting for session results.

Produces aligned plain-text tables.  Columns whose value is the same for
every benchmark (browser, version, sample size, ...) are pulled out into
a short header block so the main table only shows what varies.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

from pacer.results import ResultStats, SessionResult
from pacer.specs import measurement_name
from pacer.stats import ConfidenceInterval, Difference, find_fastest, find_slowest
from pacer.versions import ServerPlan

# ---------------------------------------------------------------------------
# Table formatting utilities
# ---------------------------------------------------------------------------


def format_table(
    headers: list[str],
    rows: list[list[str]],
    *,
    alignments: list[str] | None = None,
    indent: int = 2,
) -> str:
    """Format rows as an aligned text table with a rule under the header.

    Args:
        headers: Column header strings.
        rows: List of rows, each a list of cell strings.
        alignments: Per-column alignment, ``'l'`` or ``'r'``.
        indent: Number of leading spaces per line.
    """
    if not headers:
        return ""
    ncols = len(headers)
    aligns = list(alignments or [])
    aligns.extend(["l"] * (ncols - len(aligns)))

    padded = [(list(row) + [""] * ncols)[:ncols] for row in rows]
    widths = [len(h) for h in headers]
    for row in padded:
        for ci, cell in enumerate(row):
            widths[ci] = max(widths[ci], len(cell))

    def _cell(text: str, ci: int) -> str:
        return text.rjust(widths[ci]) if aligns[ci] == "r" else text.ljust(widths[ci])

    prefix = " " * indent
    header_line = "  ".join(_cell(h, ci) for ci, h in enumerate(headers)).rstrip()
    lines = [prefix + header_line, prefix + "─" * len(header_line)]
    for row in padded:
        lines.append(prefix + "  ".join(_cell(c, ci) for ci, c in enumerate(row)).rstrip())
    return "\n".join(lines)


def format_duration(seconds: float) -> str:
    """Format seconds as ``'8s'``, ``'1m 23s'`` or ``'1h 12m 34s'``."""
    total = int(seconds)
    if total >= 3600:
        return f"{total // 3600}h {(total % 3600) // 60:2d}m {total % 60:2d}s"
    if total >= 60:
        return f"{total // 60}m {total % 60:2d}s"
    return f"{total}s"


def _format_pct(value: float, precision: int = 0) -> str:
    """Format a fraction as a signed percentage."""
    if math.isnan(value):
        return "N/A"
    sign = "+" if value > 0 else ""
    return f"{sign}{value * 100:.{precision}f}%"


def _format_ci(ci: ConfidenceInterval, fmt: Callable[[float], str]) -> str:
    return f"{fmt(ci.low)} - {fmt(ci.high)}"


def format_difference(diff: Difference | None) -> str:
    """One-line verdict for a matrix cell.

    ``slower`` and ``faster`` are only claimed when the whole interval is
    on one side of zero; anything else is ``unsure``.
    """
    if diff is None:
        return "n/a"
    abs_ci = diff.absolute
    rel_ci = diff.relative
    if abs_ci.low > 0 and (rel_ci is None or rel_ci.low > 0):
        word = "slower"
    elif abs_ci.high < 0 and (rel_ci is None or rel_ci.high < 0):
        word = "faster"
    else:
        word = "unsure"
    abs_text = _format_ci(abs_ci, lambda v: f"{v:+.1f}ms")
    if rel_ci is None:
        return f"{word} {abs_text}"
    return f"{word} {_format_ci(rel_ci, _format_pct)} ({abs_text})"


# ---------------------------------------------------------------------------
# Result tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Dimension:
    """One column of the result table."""

    label: str
    format: Callable[[ResultStats], str]
    align: str = "l"


def _spec_field(getter: Callable[[ResultStats], str]) -> Callable[[ResultStats], str]:
    def fmt(r: ResultStats) -> str:
        return getter(r) if r.spec is not None else ""

    return fmt


BENCHMARK = Dimension("Benchmark", lambda r: r.name)
VERSION = Dimension(
    "Version", _spec_field(lambda r: r.spec.version_label if r.spec else "")
)
BROWSER = Dimension("Browser", _spec_field(lambda r: r.spec.browser.name if r.spec else ""))
MEASUREMENT = Dimension(
    "Measurement", _spec_field(lambda r: measurement_name(r.spec.measurement) if r.spec else "")
)
SAMPLE_SIZE = Dimension("Sample size", lambda r: str(len(r.samples)), "r")
AVG_TIME = Dimension(
    "Avg time",
    lambda r: _format_ci(r.stats.mean_ci, lambda v: f"{v:.1f}ms") if r.stats else "n/a",
    "r",
)

POSSIBLY_FIXED = (BENCHMARK, VERSION, BROWSER, MEASUREMENT, SAMPLE_SIZE)


def split_dimensions(results: list[ResultStats]) -> tuple[list[Dimension], list[Dimension]]:
    """Split columns into those constant across every row and the rest."""
    fixed: list[Dimension] = []
    varying: list[Dimension] = []
    for dim in POSSIBLY_FIXED:
        values = {dim.format(r) for r in results}
        if values == {""}:
            continue
        if len(results) > 1 and len(values) == 1:
            fixed.append(dim)
        else:
            varying.append(dim)
    varying.append(AVG_TIME)
    return fixed, varying


def format_session(session: SessionResult) -> str:
    """Format a whole session: fixed properties, then the comparison table."""
    results = session.results
    lines: list[str] = []
    if not results:
        return "No results."

    fixed, varying = split_dimensions(results)
    for dim in fixed:
        lines.append(f"  {dim.label + ':':<13s} {dim.format(results[0])}")
    if fixed:
        lines.append("")

    headers = [d.label for d in varying]
    aligns = [d.align for d in varying]
    if len(results) > 1:
        for r in results:
            headers.append(f"vs {r.name}")
            aligns.append("l")

    rows: list[list[str]] = []
    for i, r in enumerate(results):
        row = [d.format(r) for d in varying]
        if len(results) > 1:
            for j in range(len(results)):
                row.append("-" if i == j else format_difference(r.difference_to(j)))
        rows.append(row)
    lines.append(format_table(headers, rows, alignments=aligns))

    all_stats = [r.stats for r in results]
    fastest, slowest = find_fastest(all_stats), find_slowest(all_stats)
    if len(results) > 1 and fastest is not None and slowest is not None:
        lines.append("")
        lines.append(
            f"  Lowest mean: {results[fastest].name}; highest mean: {results[slowest].name}."
        )

    dropped = [(r.name, r.dropped) for r in results if r.dropped]
    if dropped:
        lines.append("")
        for name, count in dropped:
            lines.append(f"  Note: {count} sample(s) of {name} could not be measured.")

    footer = format_outcome(session)
    if footer:
        lines.append("")
        lines.append(footer)
    return "\n".join(lines)


def format_outcome(session: SessionResult) -> str:
    """Explain why the session stopped, if it was not a plain resolution."""
    if session.interrupted:
        return f"Interrupted after {session.rounds} rounds; results are partial."
    if session.hit_timeout:
        return (
            f"Hit timeout of {session.timeout_minutes:g} minutes after "
            f"{session.rounds} rounds without resolving all differences.\n"
            f"Try a longer --timeout, or wider --horizon values."
        )
    if session.resolved and (session.horizons.absolute or session.horizons.relative):
        return f"All differences resolved after {session.rounds} rounds."
    return ""


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def format_plan(plans: list[ServerPlan]) -> str:
    """Format server plans: which specs share which installs and mounts."""
    if not plans:
        return "Nothing to serve locally."
    lines: list[str] = []
    for idx, plan in enumerate(plans, 1):
        label = ", ".join(sorted({s.version_label or "default" for s in plan.specs}))
        lines.append(f"Server {idx} ({label}): {len(plan.specs)} benchmark(s)")
        for spec in plan.specs:
            lines.append(f"  {spec.one_liner()}")
        for install in plan.installs:
            deps = ", ".join(f"{k}@{v}" for k, v in sorted(install.dependencies.items()))
            lines.append(f"  install {install.plan_id[:12]} in {install.install_dir}")
            if deps:
                lines.append(f"    {deps}")
        for mount in plan.mount_points:
            lines.append(f"  mount {mount.url_path} → {mount.disk_path}")
    return "\n".join(lines)
