"""pacer — adaptive comparative benchmarking."""

__version__ = "0.4.0"
