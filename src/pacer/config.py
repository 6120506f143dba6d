"""Session configuration and validation.

Handles:
- The resolved ``Config`` for one benchmarking session.
- Parsing horizon strings ("0%", "+1ms", ...) into ``Horizons``.
- Merging CLI options over config-file values.
- Validating the final configuration before any install or measurement.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from pacer.errors import ConfigError
from pacer.specs import BenchmarkSpec
from pacer.stats import Horizons

log = logging.getLogger("pacer")

DEFAULT_SAMPLE_SIZE = 50
DEFAULT_TIMEOUT_MINUTES = 3.0
DEFAULT_HORIZONS = ("0%",)
DEFAULT_INSTALL_ROOT = Path(".pacer") / "installs"

_HORIZON_RE = re.compile(r"^(?P<sign>[-+])?(?P<num>\d*\.?\d+)(?P<unit>ms|%)$")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass
class Config:
    """Resolved configuration for a benchmarking session."""

    root: Path = field(default_factory=lambda: Path("."))
    benchmarks: list[BenchmarkSpec] = field(default_factory=list)

    # Sampling control
    sample_size: int = DEFAULT_SAMPLE_SIZE
    timeout: float = DEFAULT_TIMEOUT_MINUTES  # minutes; 0 disables auto-sampling
    horizons: Horizons = field(default_factory=lambda: parse_horizons(DEFAULT_HORIZONS))
    horizon_strings: list[str] = field(default_factory=lambda: list(DEFAULT_HORIZONS))

    # Installs
    install_root: Path = DEFAULT_INSTALL_ROOT
    force_clean_install: bool = False
    install_command: str = "npm install"

    # Measurement
    base_url: str | None = None
    measurement_timeout: float = 10.0

    # Outputs
    json_file: Path | None = None
    csv_stats_file: Path | None = None
    csv_raw_file: Path | None = None


# ---------------------------------------------------------------------------
# Horizons
# ---------------------------------------------------------------------------


def parse_horizons(values: Sequence[str]) -> Horizons:
    """Parse horizon strings into sorted, de-duplicated thresholds.

    Each value is a number with a ``ms`` (absolute) or ``%`` (relative)
    unit.  Unsigned non-zero values expand to both signs; signed values
    test only that side.

    Examples::

        parse_horizons(["0ms"])        -> absolute (0,)
        parse_horizons(["1%"])         -> relative (-0.01, 0.01)
        parse_horizons(["+1%", "2ms"]) -> absolute (-2, 2), relative (0.01,)

    Raises:
        ConfigError: On nonsense or unitless values.
    """
    absolute: set[float] = set()
    relative: set[float] = set()

    for raw in values:
        text = raw.strip()
        match = _HORIZON_RE.match(text)
        if match is None:
            raise ConfigError(
                f"Invalid horizon '{raw}'. Expected a number with a 'ms' or '%' "
                f"unit, optionally signed (e.g. 0%, +1ms, -5%)."
            )
        num = float(match.group("num"))
        if match.group("unit") == "%":
            num /= 100.0
            target = relative
        else:
            target = absolute

        sign = match.group("sign")
        if num == 0:
            target.add(0.0)
        elif sign == "+":
            target.add(num)
        elif sign == "-":
            target.add(-num)
        else:
            target.add(num)
            target.add(-num)

    return Horizons(absolute=tuple(sorted(absolute)), relative=tuple(sorted(relative)))


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def apply_overrides(config: Config, overrides: dict[str, Any]) -> Config:
    """Apply CLI overrides onto a config.  ``None`` values are ignored.

    Keys match ``Config`` field names, except ``horizons`` which takes the
    raw horizon strings.
    """
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "horizons":
            if not value:
                continue
            config.horizon_strings = list(value)
            config.horizons = parse_horizons(config.horizon_strings)
        elif key in ("install_root", "json_file", "csv_stats_file", "csv_raw_file"):
            setattr(config, key, Path(value))
        elif hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key '{key}'.")
    return config


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_config(config: Config) -> list[ValidationError]:
    """Validate a session configuration.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if not config.benchmarks:
        errors.append(
            ValidationError(field="benchmarks", message="No benchmarks to run.")
        )

    if isinstance(config.sample_size, bool) or not isinstance(config.sample_size, int):
        errors.append(
            ValidationError(
                field="sample_size",
                message=f"Sample size must be an integer (got {config.sample_size!r}).",
            )
        )
    elif config.sample_size < 2:
        errors.append(
            ValidationError(
                field="sample_size",
                message=(
                    f"Sample size must be at least 2 for meaningful "
                    f"statistics (got {config.sample_size})."
                ),
            )
        )

    if config.timeout < 0:
        errors.append(
            ValidationError(
                field="timeout",
                message=f"Timeout cannot be negative (got {config.timeout}).",
            )
        )

    if config.timeout > 0 and not config.horizons:
        errors.append(
            ValidationError(
                field="horizons",
                message="Auto-sampling is enabled but no horizons are configured.",
            )
        )

    if len(config.benchmarks) == 1 and config.timeout > 0:
        errors.append(
            ValidationError(
                field="benchmarks",
                message=(
                    "Only one benchmark; there is nothing to compare, so "
                    "auto-sampling will stop immediately."
                ),
                severity="warning",
            )
        )

    if not config.root.is_dir():
        errors.append(
            ValidationError(
                field="root",
                message=f"Root directory does not exist: {config.root}",
            )
        )

    names = [spec.name for spec in config.benchmarks]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates and len(set(config.benchmarks)) != len(config.benchmarks):
        errors.append(
            ValidationError(
                field="benchmarks",
                message=f"Identical benchmarks listed more than once: {', '.join(duplicates)}",
                severity="warning",
            )
        )

    return errors


def check_config(config: Config) -> None:
    """Validate, log warnings, and raise on fatal errors.

    Raises:
        ConfigError: If any validation error has severity "error".
    """
    errors = validate_config(config)
    for w in errors:
        if w.severity == "warning":
            log.warning("Config warning: %s: %s", w.field, w.message)
    fatal = [e for e in errors if e.severity == "error"]
    if fatal:
        messages = [f"  {e.field}: {e.message}" for e in fatal]
        raise ConfigError("Invalid benchmark configuration:\n" + "\n".join(messages))
