"""Benchmark matrix documents.

Loads a JSON or YAML benchmark document, recursively expands its
``expand`` variations, resolves each entry's target against the root
directory, and applies defaults to produce a flat list of
``BenchmarkSpec``.

Document format::

    {
      "root": ".",
      "sampleSize": 50,
      "timeout": 3,
      "horizons": ["0%", "+1ms"],
      "benchmarks": [
        {
          "url": "mylib/bench/index.html?size=10",
          "name": "optional label",
          "browser": "chrome-headless",
          "measurement": "callback",
          "packageVersions": {"label": "v2", "dependencies": {"mylib": "^2.0.0"}},
          "expand": [{"browser": "firefox"}, {"browser": "chrome"}]
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from pacer.config import Config, parse_horizons
from pacer.errors import ConfigError, ResolutionError
from pacer.specs import (
    DEFAULT_LABEL,
    BenchmarkSpec,
    BrowserConfig,
    LocalTarget,
    PackageVersion,
    RemoteTarget,
    Target,
    default_measurement,
    parse_browser_object,
    parse_browser_string,
    parse_measurement,
)

log = logging.getLogger("pacer")

MAX_EXPAND_DEPTH = 16
MAX_EXPANDED_BENCHMARKS = 10000
INDEX_FILE = "index.html"

_TOP_LEVEL_KEYS = frozenset(
    {
        "$schema",
        "root",
        "sampleSize",
        "timeout",
        "horizons",
        "benchmarks",
        "installRoot",
        "forceCleanInstall",
    }
)
_BENCHMARK_KEYS = frozenset(
    {
        "url",
        "name",
        "browser",
        "measurement",
        "measurementExpression",
        "packageVersions",
        "expand",
    }
)
_PACKAGE_VERSION_RE = re.compile(r"^(.+?)/(?:(default)|(?:(.+?)=(.+)))$")
_DEPENDENCY_RE = re.compile(r"^(.+)@(.+)$")


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a benchmark document from disk.

    ``.yaml``/``.yml`` files are parsed with PyYAML, anything else as JSON.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigError: If the file cannot be parsed or is not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")
    return data


def config_from_file(path: Path) -> Config:
    """Load and fully resolve a benchmark document.

    Relative paths inside the document are relative to the file's directory.
    """
    data = load_config_file(path)
    return parse_config_file(data, config_dir=path.resolve().parent)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_config_file(data: Any, *, config_dir: Path) -> Config:
    """Validate a parsed document and expand it into a ``Config``.

    Raises:
        ConfigError: On any structural problem, identifying the entry.
        ResolutionError: If a local target cannot be found on disk.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")

    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigError(f"Unknown top-level config key(s): {', '.join(unknown)}")

    benchmarks = data.get("benchmarks")
    if not isinstance(benchmarks, list):
        raise ConfigError("Config 'benchmarks' must be a list.")
    if not benchmarks:
        raise ConfigError("Config 'benchmarks' must contain at least one benchmark.")

    root_value = data.get("root", ".")
    if not isinstance(root_value, str):
        raise ConfigError("Config 'root' must be a string.")
    root = (config_dir / root_value).resolve()

    config = Config(root=root)

    if "sampleSize" in data:
        sample_size = data["sampleSize"]
        if isinstance(sample_size, bool) or not isinstance(sample_size, int):
            raise ConfigError(f"Config 'sampleSize' must be an integer, got {sample_size!r}.")
        if sample_size < 2:
            raise ConfigError(f"Config 'sampleSize' must be at least 2, got {sample_size}.")
        config.sample_size = sample_size

    if "timeout" in data:
        timeout = data["timeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0:
            raise ConfigError(f"Config 'timeout' must be a number >= 0, got {timeout!r}.")
        config.timeout = float(timeout)

    if "horizons" in data:
        horizons = data["horizons"]
        if not isinstance(horizons, list) or not all(isinstance(h, str) for h in horizons):
            raise ConfigError("Config 'horizons' must be a list of strings.")
        config.horizon_strings = list(horizons)
        config.horizons = parse_horizons(horizons)

    if "installRoot" in data:
        config.install_root = (config_dir / str(data["installRoot"])).resolve()
    if "forceCleanInstall" in data:
        config.force_clean_install = bool(data["forceCleanInstall"])

    specs: list[BenchmarkSpec] = []
    for idx, entry in enumerate(benchmarks):
        where = f"benchmarks[{idx}]"
        for expanded in expand_benchmark(entry, where=where):
            specs.append(apply_defaults(parse_benchmark(expanded, root, where=where), where=where))
            if len(specs) > MAX_EXPANDED_BENCHMARKS:
                raise ConfigError(
                    f"{where}: 'benchmarks' expands to more than "
                    f"{MAX_EXPANDED_BENCHMARKS} benchmarks."
                )
    config.benchmarks = specs

    log.debug("Resolved %d benchmark(s) from %d entries", len(specs), len(benchmarks))
    return config


def expand_benchmark(
    entry: Any,
    *,
    where: str = "benchmarks[0]",
    depth: int = 0,
) -> list[dict[str, Any]]:
    """Flatten one benchmark entry and its ``expand`` tree.

    Each child of ``expand`` is itself expanded, then overlaid on a copy
    of the parent (child fields win).  The result is the depth-first
    cartesian combination of the tree.

    Raises:
        ConfigError: On malformed entries, excessive depth, or excessive
            fan-out.
    """
    if depth > MAX_EXPAND_DEPTH:
        raise ConfigError(f"{where}: 'expand' nested more than {MAX_EXPAND_DEPTH} levels deep.")
    if not isinstance(entry, dict):
        raise ConfigError(f"{where}: benchmark must be a mapping, got {type(entry).__name__}.")

    unknown = sorted(set(entry) - _BENCHMARK_KEYS)
    if unknown:
        raise ConfigError(f"{where}: unknown benchmark key(s): {', '.join(unknown)}")

    base = {k: v for k, v in entry.items() if k != "expand"}
    children = entry.get("expand")
    if children is None or children == []:
        return [base]
    if not isinstance(children, list):
        raise ConfigError(f"{where}: 'expand' must be a list.")

    expanded: list[dict[str, Any]] = []
    for idx, child in enumerate(children):
        for fragment in expand_benchmark(child, where=f"{where}.expand[{idx}]", depth=depth + 1):
            expanded.append({**base, **fragment})
            if len(expanded) > MAX_EXPANDED_BENCHMARKS:
                raise ConfigError(
                    f"{where}: 'expand' produces more than "
                    f"{MAX_EXPANDED_BENCHMARKS} benchmarks."
                )
    return expanded


def parse_benchmark(entry: dict[str, Any], root: Path, *, where: str = "") -> dict[str, Any]:
    """Parse one flattened entry into partial spec fields.

    Returns a dict with any of ``name``, ``target``, ``measurement`` and
    ``browser``.  Missing fields are filled in by :func:`apply_defaults`.
    """
    partial: dict[str, Any] = {}

    if "name" in entry:
        if not isinstance(entry["name"], str):
            raise ConfigError(f"{where}: 'name' must be a string.")
        partial["name"] = entry["name"]

    browser = entry.get("browser")
    if browser is not None:
        try:
            if isinstance(browser, str):
                partial["browser"] = parse_browser_string(browser)
            elif isinstance(browser, dict):
                partial["browser"] = parse_browser_object(browser)
            else:
                raise ConfigError("'browser' must be a string or mapping.")
        except ConfigError as exc:
            raise ConfigError(f"{where}: {exc}") from exc

    expression = entry.get("measurementExpression")
    if expression is not None and not isinstance(expression, str):
        raise ConfigError(f"{where}: 'measurementExpression' must be a string.")
    if "measurement" in entry:
        try:
            partial["measurement"] = parse_measurement(entry["measurement"], expression=expression)
        except ConfigError as exc:
            raise ConfigError(f"{where}: {exc}") from exc

    url = entry.get("url")
    if url is not None:
        if not isinstance(url, str) or not url:
            raise ConfigError(f"{where}: 'url' must be a non-empty string.")
        partial["target"] = parse_target(
            url, root, entry.get("packageVersions"), where=where
        )
    elif "packageVersions" in entry:
        raise ConfigError(f"{where}: 'packageVersions' requires a local 'url'.")

    return partial


def parse_target(
    url: str,
    root: Path,
    package_versions: Any = None,
    *,
    where: str = "",
) -> Target:
    """Resolve a ``url`` value into a remote or local target."""
    if is_http_url(url):
        if package_versions is not None:
            raise ConfigError(f"{where}: 'packageVersions' is only supported with local paths.")
        return RemoteTarget(url=url)

    q = url.find("?")
    if q != -1:
        path_part, query_string = url[:q], url[q:]
    else:
        path_part, query_string = url, ""

    version = None
    if package_versions is not None:
        version = _parse_package_version_object(package_versions, where=where)

    return LocalTarget(
        url_path=url_path_from_local_path(root, path_part, where=where),
        query_string=query_string,
        version=version,
    )


def _parse_package_version_object(data: Any, *, where: str) -> PackageVersion:
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: 'packageVersions' must be a mapping.")
    label = data.get("label")
    if not isinstance(label, str) or not label:
        raise ConfigError(f"{where}: 'packageVersions' requires a 'label'.")
    deps = data.get("dependencies", {})
    if not isinstance(deps, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in deps.items()
    ):
        raise ConfigError(
            f"{where}: 'packageVersions.dependencies' must map package names to versions."
        )
    if label == DEFAULT_LABEL and deps:
        raise ConfigError(
            f"{where}: the '{DEFAULT_LABEL}' package version cannot override dependencies."
        )
    return PackageVersion(label=label, dependency_overrides=dict(deps))


def is_http_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def url_path_from_local_path(root: Path, local_path: str, *, where: str = "") -> str:
    """Convert a local path to a root-relative URL path.

    Directories must contain an ``index.html`` and map to a URL path with
    a trailing slash.

    Raises:
        ResolutionError: If the path does not exist, escapes the root, or
            is a directory without an index file.
    """
    root = root.resolve()
    disk_path = (root / local_path).resolve()
    if not disk_path.exists():
        raise ResolutionError(f"{where}: no such file or directory: {disk_path}")
    try:
        relative = disk_path.relative_to(root)
    except ValueError:
        raise ResolutionError(
            f"{where}: {disk_path} is not accessible from the root directory {root}"
        ) from None

    url_path = "/" + relative.as_posix() if relative.parts else "/"
    if disk_path.is_dir():
        if not (disk_path / INDEX_FILE).is_file():
            raise ResolutionError(f"{where}: directory {disk_path} has no {INDEX_FILE}")
        if not url_path.endswith("/"):
            url_path += "/"
    return url_path


def apply_defaults(partial: dict[str, Any], *, where: str = "") -> BenchmarkSpec:
    """Fill in defaults and build the final spec.

    Raises:
        ConfigError: If no target was specified anywhere in the expansion.
    """
    target = partial.get("target")
    if target is None:
        # Only detectable after expansion, since any level may supply the url.
        raise ConfigError(f"{where}: No URL specified")

    name = partial.get("name")
    if name is None:
        name = target.display()

    return BenchmarkSpec(
        name=name,
        target=target,
        measurement=partial.get("measurement") or default_measurement(target),
        browser=partial.get("browser") or BrowserConfig(),
    )


# ---------------------------------------------------------------------------
# --package-version flags
# ---------------------------------------------------------------------------


def parse_package_versions(flags: list[str]) -> dict[str, list[PackageVersion]]:
    """Parse ``<implementation>/<label>=<pkg>@<version>[,<pkg>@<version>...]``.

    ``<implementation>/default`` adds the default (no install) version.

    Raises:
        ConfigError: On malformed flags or a label used twice for the same
            implementation.
    """
    versions: dict[str, list[PackageVersion]] = {}
    seen_labels: set[str] = set()

    for flag in flags:
        match = _PACKAGE_VERSION_RE.match(flag.strip())
        if match is None:
            raise ConfigError(f'Invalid package-version format: "{flag}"')
        implementation, is_default, label, package_versions = match.groups()

        overrides: dict[str, str] = {}
        if is_default is None:
            impl_label = f"{implementation}/{label}"
            if impl_label in seen_labels:
                raise ConfigError(f'package-version label "{impl_label}" was used more than once')
            seen_labels.add(impl_label)

            for pv in package_versions.split(","):
                dep_match = _DEPENDENCY_RE.match(pv.strip())
                if dep_match is None:
                    raise ConfigError(
                        f'Invalid package-version format: "{pv}" is not a valid '
                        f"dependency version"
                    )
                overrides[dep_match.group(1)] = dep_match.group(2)

        versions.setdefault(implementation, []).append(
            PackageVersion(
                label=DEFAULT_LABEL if is_default is not None else label,
                dependency_overrides=overrides,
            )
        )
    return versions


def apply_package_versions(
    specs: list[BenchmarkSpec],
    versions: dict[str, list[PackageVersion]],
) -> list[BenchmarkSpec]:
    """Multiply local specs by the package versions of their implementation.

    The implementation of a local spec is the first segment of its URL
    path.  Specs that already carry a version, remote specs, and specs
    whose implementation has no versions are kept unchanged.
    """
    result: list[BenchmarkSpec] = []
    for spec in specs:
        target = spec.target
        if not isinstance(target, LocalTarget) or target.version is not None:
            result.append(spec)
            continue
        implementation = target.url_path.strip("/").split("/", 1)[0]
        impl_versions = versions.get(implementation)
        if not impl_versions:
            result.append(spec)
            continue
        for version in impl_versions:
            name = spec.name if version.is_default else f"{spec.name} [@{version.label}]"
            result.append(replace(spec, name=name, target=replace(target, version=version)))
    return result
