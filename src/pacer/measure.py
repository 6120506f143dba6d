"""Measurement sources.

A measurement source produces one millisecond sample per call for a
given spec.  Two sources are provided:

- :class:`HttpMeasurementSource` loads the spec's URL with ``requests``
  and derives the sample from the response, according to the spec's
  measurement kind.
- :class:`CallbackMeasurementSource` triggers an external run and waits
  for the result to be reported back through a :class:`PendingResult`.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable
from urllib.parse import urljoin

import requests

from pacer.errors import ConfigError, MeasurementError
from pacer.sampler import PendingResult
from pacer.specs import (
    BenchmarkSpec,
    CallbackMeasurement,
    ExpressionMeasurement,
    LocalTarget,
    PerformanceMeasurement,
    RemoteTarget,
)

log = logging.getLogger("pacer")

DEFAULT_TIMEOUT = 10.0

Extractor = Callable[[requests.Response, float], float]


def spec_url(spec: BenchmarkSpec, base_url: str | None) -> str:
    """The URL to load for a spec.

    Raises:
        ConfigError: If the spec is local and no base URL is known.
    """
    target = spec.target
    if isinstance(target, RemoteTarget):
        return target.url
    assert isinstance(target, LocalTarget)
    if not base_url:
        raise ConfigError(
            f"Benchmark '{spec.name}' is a local path ({target.url_path}); "
            f"pass --base-url with the URL the root directory is served at."
        )
    return urljoin(base_url.rstrip("/") + "/", target.url_path.lstrip("/")) + target.query_string


def lookup_path(data: Any, path: str) -> Any:
    """Follow a dotted key path (``a.b.0.c``) into decoded JSON."""
    current = data
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            raise MeasurementError(f"'{path}' not found in response (missing '{key}')")
    return current


def _wall_time(response: requests.Response, wall_ms: float) -> float:
    return wall_ms


def _headers_time(response: requests.Response, wall_ms: float) -> float:
    return response.elapsed.total_seconds() * 1000.0


def _expression_extractor(expression: str) -> Extractor:
    def extract(response: requests.Response, wall_ms: float) -> float:
        try:
            data = response.json()
        except ValueError as exc:
            raise MeasurementError(f"Response is not JSON: {exc}") from exc
        value = lookup_path(data, expression)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MeasurementError(f"'{expression}' is not a number: {value!r}")
        if math.isnan(value) or value < 0:
            raise MeasurementError(f"'{expression}' is not a non-negative number: {value!r}")
        return float(value)

    return extract


def make_extractor(spec: BenchmarkSpec) -> Extractor:
    """Pick how a sample is read from a response, once per spec."""
    measurement = spec.measurement
    if isinstance(measurement, CallbackMeasurement):
        return _wall_time
    if isinstance(measurement, PerformanceMeasurement):
        return _headers_time
    if isinstance(measurement, ExpressionMeasurement):
        return _expression_extractor(measurement.expression)
    raise ConfigError(f"Unsupported measurement for '{spec.name}': {measurement!r}")


class HttpMeasurementSource:
    """Measures specs by loading their URLs over HTTP."""

    def __init__(
        self,
        specs: list[BenchmarkSpec],
        *,
        base_url: str | None = None,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self._urls = {spec: spec_url(spec, base_url) for spec in specs}
        self._extractors = {spec: make_extractor(spec) for spec in specs}

    def url_for(self, spec: BenchmarkSpec) -> str:
        return self._urls[spec]

    def measure(self, spec: BenchmarkSpec) -> float:
        """Load the spec's URL once and return the sample in milliseconds.

        Raises:
            MeasurementError: On connection errors, timeouts, non-2xx
                responses or unusable response bodies.
        """
        url = self._urls[spec]
        start = time.perf_counter()
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise MeasurementError(f"Timeout loading {url}") from exc
        except requests.ConnectionError as exc:
            raise MeasurementError(f"Connection error loading {url}: {exc}") from exc
        except requests.RequestException as exc:
            raise MeasurementError(f"Request failed for {url}: {exc}") from exc
        wall_ms = (time.perf_counter() - start) * 1000.0

        if not response.ok:
            raise MeasurementError(f"{url} returned HTTP {response.status_code}")
        millis = self._extractors[spec](response, wall_ms)
        log.debug("%s: %.3fms", url, millis)
        return millis

    def close(self) -> None:
        self.session.close()


class CallbackMeasurementSource:
    """Measures specs whose result is reported back asynchronously.

    ``trigger(spec, run_id)`` starts one run; the receiving side must
    call ``pending.fulfill(run_id, millis)`` when the run reports in.
    """

    def __init__(
        self,
        trigger: Callable[[BenchmarkSpec, int], None],
        *,
        pending: PendingResult | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.trigger = trigger
        self.pending = pending or PendingResult()
        self.timeout = timeout

    def measure(self, spec: BenchmarkSpec) -> float:
        run_id = self.pending.begin(spec)
        try:
            self.trigger(spec, run_id)
        except Exception as exc:
            self.pending.abandon()
            raise MeasurementError(f"Could not start run for {spec.name}: {exc}") from exc
        return self.pending.wait(self.timeout)
