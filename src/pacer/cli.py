"""Command-line interface for pacer.

Subcommands:
    pacer run       Install, measure and compare the benchmarks of a document
    pacer plan      Show resolved benchmarks and install plans
    pacer install   Prepare isolated dependency installs only
    pacer compare   Recompute comparisons from a saved JSON results file
"""

from __future__ import annotations

import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any

import click

from pacer import __version__
from pacer.config import Config, apply_overrides, check_config, parse_horizons
from pacer.configfile import apply_package_versions, config_from_file, parse_package_versions
from pacer.errors import PacerError
from pacer.logging import setup_logging

log = logging.getLogger("pacer")

_logging_options = [
    click.option("-v", "--verbose", is_flag=True, default=False, help="Show debug output."),
    click.option("-q", "--quiet", is_flag=True, default=False, help="Only show warnings."),
    click.option(
        "--log-file",
        type=click.Path(path_type=Path),
        default=None,
        help="Also write a DEBUG-level log to this file.",
    ),
]


def logging_options(func: Any) -> Any:
    for option in reversed(_logging_options):
        func = option(func)
    return func


def _load_config(
    config_path: Path,
    package_versions: tuple[str, ...],
    overrides: dict[str, Any],
) -> Config:
    """Load a benchmark document, apply CLI flags, and validate the result."""
    config = config_from_file(config_path)
    if package_versions:
        versions = parse_package_versions(list(package_versions))
        config.benchmarks = apply_package_versions(config.benchmarks, versions)
    apply_overrides(config, overrides)
    check_config(config)
    return config


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """pacer: adaptive comparative benchmarking.

    Measures several variants of a workload round by round and keeps
    sampling until every pairwise difference is statistically resolved.
    """


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--sample-size",
    "-n",
    type=int,
    default=None,
    help="Minimum samples per benchmark (default: 50).",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Minutes to keep auto-sampling after the minimum; 0 disables (default: 3).",
)
@click.option(
    "--horizon",
    "horizons",
    multiple=True,
    help="Difference threshold such as 0%, +1ms or -5% (repeatable).",
)
@click.option(
    "--package-version",
    "package_versions",
    multiple=True,
    help="'<impl>/<label>=<pkg>@<version>,...' or '<impl>/default' (repeatable).",
)
@click.option("--base-url", default=None, help="URL at which the root directory is served.")
@click.option(
    "--install-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for isolated dependency installs.",
)
@click.option(
    "--force-clean-install",
    is_flag=True,
    default=False,
    help="Reinstall dependency sets even if already installed.",
)
@click.option("--install-command", default=None, help="Install command (default: npm install).")
@click.option(
    "--measurement-timeout",
    type=float,
    default=None,
    help="Seconds to wait for one measurement (default: 10).",
)
@click.option(
    "--json-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Write results as JSON.",
)
@click.option(
    "--csv-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Write summary statistics as CSV.",
)
@click.option(
    "--csv-file-raw", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Write every raw sample as CSV.",
)
@logging_options
def run(  # noqa: PLR0913
    config_path: Path,
    sample_size: int | None,
    timeout: float | None,
    horizons: tuple[str, ...],
    package_versions: tuple[str, ...],
    base_url: str | None,
    install_root: Path | None,
    force_clean_install: bool,
    install_command: str | None,
    measurement_timeout: float | None,
    json_file: Path | None,
    csv_file: Path | None,
    csv_file_raw: Path | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Benchmark every variant in CONFIG_PATH and compare them.

    \b
    Examples:
        # Compare two variants until resolved against a 1% horizon
        pacer run benchmarks.json --base-url http://localhost:8000 \\
            --horizon 1%

        # Compare two versions of a dependency
        pacer run benchmarks.json --base-url http://localhost:8000 \\
            --package-version mylib/v1=mylib@1.0.0 \\
            --package-version mylib/v2=mylib@2.0.0
    """
    from pacer.display import format_duration, format_session
    from pacer.install import install_all
    from pacer.measure import HttpMeasurementSource
    from pacer.results import format_csv_raw, format_csv_stats, save_json
    from pacer.sampler import AutoSampler, SamplerConfig
    from pacer.versions import make_install_plans, unique_installs

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    overrides: dict[str, Any] = {
        "sample_size": sample_size,
        "timeout": timeout,
        "horizons": list(horizons),
        "base_url": base_url,
        "install_root": install_root,
        "force_clean_install": force_clean_install or None,
        "install_command": install_command,
        "measurement_timeout": measurement_timeout,
        "json_file": json_file,
        "csv_stats_file": csv_file,
        "csv_raw_file": csv_file_raw,
    }

    try:
        config = _load_config(config_path, package_versions, overrides)
        # Resolves every benchmark URL, so a missing --base-url fails before installing.
        source = HttpMeasurementSource(
            config.benchmarks,
            base_url=config.base_url,
            timeout=config.measurement_timeout,
        )
        try:
            plans = make_install_plans(config.root, config.install_root, config.benchmarks)
            installs = unique_installs(plans)
            if installs:
                ran = install_all(
                    installs,
                    force_clean=config.force_clean_install,
                    install_command=config.install_command,
                )
                log.info("%d install(s) ready, %d freshly installed", len(installs), ran)

            sampler = AutoSampler(
                config.benchmarks,
                source,
                SamplerConfig(
                    sample_size=config.sample_size,
                    timeout_minutes=config.timeout,
                    horizons=config.horizons,
                ),
            )

            def _on_sigint(signum: int, frame: Any) -> None:
                log.warning("Interrupt received; stopping after the current round...")
                sampler.cancel()

            previous = signal.signal(signal.SIGINT, _on_sigint)
            try:
                log.info(
                    "Running %d benchmark(s): %d samples minimum, timeout %g min, horizons %s",
                    len(config.benchmarks),
                    config.sample_size,
                    config.timeout,
                    ", ".join(config.horizon_strings) or "none",
                )
                started = time.monotonic()
                session = sampler.run()
                log.info("Sampling took %s", format_duration(time.monotonic() - started))
            finally:
                signal.signal(signal.SIGINT, previous)
        finally:
            source.close()
    except PacerError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(format_session(session))

    if config.json_file is not None:
        save_json(config.json_file, session)
    if config.csv_stats_file is not None:
        config.csv_stats_file.write_text(format_csv_stats(session), encoding="utf-8")
        log.info("Wrote %s", config.csv_stats_file)
    if config.csv_raw_file is not None:
        config.csv_raw_file.write_text(format_csv_raw(sampler.sample_sets), encoding="utf-8")
        log.info("Wrote %s", config.csv_raw_file)

    if session.interrupted:
        sys.exit(130)


# ---------------------------------------------------------------------------
# plan
# ---------------------------------------------------------------------------


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--package-version", "package_versions", multiple=True)
@click.option(
    "--install-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for isolated dependency installs.",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the plan as JSON.")
@logging_options
def plan(
    config_path: Path,
    package_versions: tuple[str, ...],
    install_root: Path | None,
    as_json: bool,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Show the resolved benchmarks of CONFIG_PATH and their install plans."""
    import json

    from pacer.display import format_plan
    from pacer.versions import make_install_plans

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    try:
        config = _load_config(config_path, package_versions, {"install_root": install_root})
        plans = make_install_plans(config.root, config.install_root, config.benchmarks)
    except PacerError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(
            json.dumps(
                {
                    "benchmarks": [s.to_dict() for s in config.benchmarks],
                    "servers": [p.to_dict() for p in plans],
                },
                indent=2,
            )
        )
        return

    click.echo(f"{len(config.benchmarks)} benchmark(s) in {config.root}:")
    for spec in config.benchmarks:
        click.echo(f"  {spec.one_liner()}")
    click.echo("")
    click.echo(format_plan(plans))


# ---------------------------------------------------------------------------
# install
# ---------------------------------------------------------------------------


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--package-version", "package_versions", multiple=True)
@click.option(
    "--install-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for isolated dependency installs.",
)
@click.option("--force-clean-install", is_flag=True, default=False)
@click.option("--install-command", default=None, help="Install command (default: npm install).")
@logging_options
def install(
    config_path: Path,
    package_versions: tuple[str, ...],
    install_root: Path | None,
    force_clean_install: bool,
    install_command: str | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Prepare the isolated dependency installs of CONFIG_PATH."""
    from pacer.install import install_all
    from pacer.versions import make_install_plans, unique_installs

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    overrides = {
        "install_root": install_root,
        "force_clean_install": force_clean_install or None,
        "install_command": install_command,
    }
    try:
        config = _load_config(config_path, package_versions, overrides)
        installs = unique_installs(
            make_install_plans(config.root, config.install_root, config.benchmarks)
        )
        ran = install_all(
            installs,
            force_clean=config.force_clean_install,
            install_command=config.install_command,
        )
    except PacerError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if not installs:
        click.echo("No isolated installs needed.")
    else:
        click.echo(f"{len(installs)} install(s) ready ({ran} installed, {len(installs) - ran} reused).")


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------


@main.command()
@click.argument("results_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--horizon",
    "horizons",
    multiple=True,
    help="Difference threshold such as 0%, +1ms or -5% (repeatable, default: 0%).",
)
@logging_options
def compare(
    results_path: Path,
    horizons: tuple[str, ...],
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Recompute the comparison matrix from a saved JSON results file.

    Exits with status 1 if any difference is unresolved.
    """
    from pacer.config import DEFAULT_HORIZONS
    from pacer.display import format_session
    from pacer.results import load_sample_sets, make_session_result

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    try:
        parsed = parse_horizons(list(horizons) or list(DEFAULT_HORIZONS))
        sample_sets = load_sample_sets(results_path)
    except (PacerError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    session = make_session_result(
        sample_sets,
        parsed,
        rounds=max((len(s) for s in sample_sets), default=0),
    )
    click.echo(format_session(session))
    if not session.resolved:
        click.echo("\nUnresolved: at least one difference overlaps a horizon.", err=True)
        sys.exit(1)
