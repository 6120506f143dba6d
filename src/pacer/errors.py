"""Exception hierarchy for pacer.

Configuration and resolution errors are fatal and raised before any
installation or measurement starts.  Measurement errors are recovered
locally by the sampler (the sample is dropped).
"""

from __future__ import annotations


class PacerError(Exception):
    """Base class for all pacer errors."""


class ConfigError(PacerError):
    """The benchmark configuration is invalid."""


class ResolutionError(PacerError):
    """A benchmark target could not be resolved on disk."""


class InstallError(PacerError):
    """Installing an isolated dependency set failed."""


class MeasurementError(PacerError):
    """A single measurement could not be obtained."""


class InvalidSampleSize(PacerError, ValueError):
    """Summary statistics need at least two samples."""
