"""Benchmark specification data model.

Hierarchy::

    BenchmarkSpec (one variant to measure)
      → target: RemoteTarget | LocalTarget
          → LocalTarget.version: PackageVersion | None
      → measurement: CallbackMeasurement | PerformanceMeasurement
                     | ExpressionMeasurement
      → browser: BrowserConfig

All types are frozen dataclasses with structural equality, so specs can
be used as dict keys and grouped by value rather than identity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from pacer.errors import ConfigError

DEFAULT_LABEL = "default"
DEFAULT_BROWSER = "chrome"
DEFAULT_WINDOW_SIZE = (1024, 768)
DEFAULT_ENTRY_NAME = "first-contentful-paint"
DEFAULT_EXPRESSION = "pacerResult"

VALID_BROWSERS = frozenset({"chrome", "firefox", "safari", "edge", "ie"})
HEADLESS_BROWSERS = frozenset({"chrome", "firefox"})


# ---------------------------------------------------------------------------
# Package versions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PackageVersion:
    """A labelled set of dependency overrides for one implementation."""

    label: str
    dependency_overrides: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def is_default(self) -> bool:
        """True if this version means "use whatever is installed"."""
        return self.label == DEFAULT_LABEL

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "dependencies": dict(self.dependency_overrides)}


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemoteTarget:
    """A fully qualified URL, measured as-is."""

    url: str
    kind: str = field(default="remote", init=False)

    def display(self) -> str:
        return self.url


@dataclass(frozen=True)
class LocalTarget:
    """A path under the benchmark root, served locally.

    ``url_path`` is root-relative and always starts with ``/``.
    """

    url_path: str
    query_string: str = ""
    version: PackageVersion | None = None
    kind: str = field(default="local", init=False)

    def display(self) -> str:
        return self.url_path + self.query_string

    @property
    def needs_install(self) -> bool:
        """True if this target needs an isolated dependency install."""
        return self.version is not None and not self.version.is_default


Target = Union[RemoteTarget, LocalTarget]


# ---------------------------------------------------------------------------
# Measurements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CallbackMeasurement:
    """Duration reported explicitly by the workload when it finishes."""

    mode: str = field(default="callback", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode}


@dataclass(frozen=True)
class PerformanceMeasurement:
    """Start time of a named performance entry (e.g. first paint)."""

    entry_name: str = DEFAULT_ENTRY_NAME
    mode: str = field(default="performance", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode, "entryName": self.entry_name}


@dataclass(frozen=True)
class ExpressionMeasurement:
    """Value of an arbitrary numeric expression evaluated after the run."""

    expression: str = DEFAULT_EXPRESSION
    mode: str = field(default="expression", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode, "expression": self.expression}


Measurement = Union[CallbackMeasurement, PerformanceMeasurement, ExpressionMeasurement]


def default_measurement(target: Target) -> Measurement:
    """Remote pages are measured by first paint, local ones by callback."""
    if isinstance(target, RemoteTarget):
        return PerformanceMeasurement()
    return CallbackMeasurement()


def measurement_name(measurement: Measurement) -> str:
    """Short human-readable name for a measurement."""
    if isinstance(measurement, CallbackMeasurement):
        return "callback"
    if isinstance(measurement, PerformanceMeasurement):
        if measurement.entry_name == DEFAULT_ENTRY_NAME:
            return "fcp"
        return measurement.entry_name
    return measurement.expression


def parse_measurement(value: Any, *, expression: str | None = None) -> Measurement:
    """Parse a measurement from its config-file form.

    Accepts the string shorthands ``callback``, ``fcp`` and ``global``, or
    a mapping with a ``mode`` key (``callback``, ``performance`` with
    ``entryName``, ``expression`` with ``expression``).

    Raises:
        ConfigError: If the value is not a known measurement.
    """
    if isinstance(value, str):
        if value == "callback":
            return CallbackMeasurement()
        if value == "fcp":
            return PerformanceMeasurement()
        if value == "global":
            return ExpressionMeasurement(expression or DEFAULT_EXPRESSION)
        raise ConfigError(
            f"Unknown measurement '{value}'. Expected callback, fcp, global, "
            f"or an object with a 'mode' key."
        )
    if not isinstance(value, dict):
        raise ConfigError(f"Measurement must be a string or mapping, got {type(value).__name__}")

    mode = value.get("mode")
    if mode == "callback":
        return CallbackMeasurement()
    if mode == "performance":
        entry_name = value.get("entryName", DEFAULT_ENTRY_NAME)
        if not isinstance(entry_name, str) or not entry_name:
            raise ConfigError("Performance measurement 'entryName' must be a non-empty string.")
        return PerformanceMeasurement(entry_name)
    if mode == "expression":
        expr = value.get("expression", expression or DEFAULT_EXPRESSION)
        if not isinstance(expr, str) or not expr:
            raise ConfigError("Expression measurement 'expression' must be a non-empty string.")
        return ExpressionMeasurement(expr)
    raise ConfigError(f"Unknown measurement mode {mode!r}.")


# ---------------------------------------------------------------------------
# Browsers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BrowserConfig:
    """Identity of the execution environment a spec is measured in."""

    name: str = DEFAULT_BROWSER
    headless: bool = False
    window_size: tuple[int, int] = DEFAULT_WINDOW_SIZE
    remote_url: str | None = None
    binary: str | None = None
    add_arguments: tuple[str, ...] = ()
    remove_arguments: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        """Key identifying one launched browser instance.

        Specs with the same signature can share a browser.
        """
        parts = [self.name]
        if self.headless:
            parts.append("headless")
        if self.remote_url:
            parts.append(self.remote_url)
        if self.binary:
            parts.append(self.binary)
        parts.extend(self.add_arguments)
        parts.extend(f"-{arg}" for arg in self.remove_arguments)
        return "|".join(parts)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "headless": self.headless,
            "windowSize": {"width": self.window_size[0], "height": self.window_size[1]},
        }
        if self.remote_url:
            d["remoteUrl"] = self.remote_url
        if self.binary:
            d["binary"] = self.binary
        if self.add_arguments:
            d["addArguments"] = list(self.add_arguments)
        if self.remove_arguments:
            d["removeArguments"] = list(self.remove_arguments)
        return d


def parse_browser_string(text: str) -> BrowserConfig:
    """Parse ``name[-headless][@remote_url]``.

    Examples::

        "chrome"
        "firefox-headless"
        "chrome@http://grid.example.com:4444/wd/hub"
    """
    remote_url: str | None = None
    if "@" in text:
        text, remote_url = text.split("@", 1)
    name = text.strip()
    headless = False
    if name.endswith("-headless"):
        name = name[: -len("-headless")]
        headless = True
    browser = BrowserConfig(name=name, headless=headless, remote_url=remote_url or None)
    validate_browser(browser)
    return browser


def parse_browser_object(data: dict[str, Any]) -> BrowserConfig:
    """Parse the object form of a browser config."""
    name = data.get("name")
    if not isinstance(name, str):
        raise ConfigError("Browser config requires a 'name' string.")
    size = data.get("windowSize")
    window_size = DEFAULT_WINDOW_SIZE
    if size is not None:
        try:
            window_size = (int(size["width"]), int(size["height"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError("Browser 'windowSize' needs integer width and height.") from exc
        if window_size[0] < 0 or window_size[1] < 0:
            raise ConfigError("Browser 'windowSize' cannot be negative.")
    browser = BrowserConfig(
        name=name,
        headless=bool(data.get("headless", False)),
        window_size=window_size,
        remote_url=data.get("remoteUrl") or None,
        binary=data.get("binary") or None,
        add_arguments=tuple(data.get("addArguments", ())),
        remove_arguments=tuple(data.get("removeArguments", ())),
    )
    validate_browser(browser)
    return browser


def validate_browser(browser: BrowserConfig) -> None:
    """Raise ConfigError if the browser config is not supported."""
    if browser.name not in VALID_BROWSERS:
        raise ConfigError(
            f"Browser {browser.name} is not supported, "
            f"only {', '.join(sorted(VALID_BROWSERS))} are currently supported."
        )
    if browser.headless and browser.name not in HEADLESS_BROWSERS:
        raise ConfigError(f"Browser {browser.name} does not support headless mode.")
    if (browser.binary or browser.add_arguments) and browser.name not in HEADLESS_BROWSERS:
        raise ConfigError(f"Browser {browser.name} does not support custom binaries or arguments.")
    if browser.remove_arguments and browser.name != "chrome":
        raise ConfigError("Only chrome supports removeArguments.")


# ---------------------------------------------------------------------------
# BenchmarkSpec
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BenchmarkSpec:
    """One fully resolved variant to measure."""

    name: str
    target: Target
    measurement: Measurement = field(default_factory=CallbackMeasurement)
    browser: BrowserConfig = field(default_factory=BrowserConfig)

    @property
    def version_label(self) -> str:
        """The package-version label, or empty for remote/default targets."""
        if isinstance(self.target, LocalTarget) and self.target.version is not None:
            return self.target.version.label
        return ""

    def one_liner(self) -> str:
        """Compact description used in progress output."""
        parts = [self.browser.name, self.name]
        tag = f"[@{self.version_label}]"
        if self.version_label and self.version_label != DEFAULT_LABEL and tag not in self.name:
            parts.append(tag)
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        target: dict[str, Any]
        if isinstance(self.target, RemoteTarget):
            target = {"kind": "remote", "url": self.target.url}
        else:
            target = {
                "kind": "local",
                "urlPath": self.target.url_path,
                "queryString": self.target.query_string,
            }
            if self.target.version is not None:
                target["version"] = self.target.version.to_dict()
        return {
            "name": self.name,
            "url": target,
            "measurement": self.measurement.to_dict(),
            "browser": self.browser.to_dict(),
        }
