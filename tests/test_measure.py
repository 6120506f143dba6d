"""Tests for pacer.measure — HTTP and callback measurement sources."""

from __future__ import annotations

import datetime
import unittest
from unittest.mock import MagicMock

import requests

from pacer.errors import ConfigError, MeasurementError
from pacer.measure import (
    CallbackMeasurementSource,
    HttpMeasurementSource,
    lookup_path,
    spec_url,
)
from pacer.sampler import PendingResult
from pacer.specs import (
    BenchmarkSpec,
    CallbackMeasurement,
    ExpressionMeasurement,
    LocalTarget,
    PerformanceMeasurement,
    RemoteTarget,
)

from pacer_test_helpers import make_local_spec, make_remote_spec


def _response(
    *,
    status: int = 200,
    json_data: object = None,
    elapsed_ms: float = 0.0,
) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.elapsed = datetime.timedelta(milliseconds=elapsed_ms)
    if json_data is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = json_data
    return resp


def _session(response: MagicMock | None = None, error: Exception | None = None) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return session


class TestSpecUrl(unittest.TestCase):
    def test_remote(self) -> None:
        spec = make_remote_spec("r", "https://example.com/page?x=1")
        self.assertEqual(spec_url(spec, None), "https://example.com/page?x=1")

    def test_local(self) -> None:
        spec = make_local_spec("l", "/mylib/bench/", query_string="?size=10")
        self.assertEqual(
            spec_url(spec, "http://localhost:8000"), "http://localhost:8000/mylib/bench/?size=10"
        )
        self.assertEqual(
            spec_url(spec, "http://localhost:8000/sub/"),
            "http://localhost:8000/sub/mylib/bench/?size=10",
        )

    def test_local_needs_base_url(self) -> None:
        with self.assertRaises(ConfigError):
            spec_url(make_local_spec("l"), None)


class TestLookupPath(unittest.TestCase):
    def test_nested(self) -> None:
        data = {"a": {"b": [{"c": 3}]}}
        self.assertEqual(lookup_path(data, "a.b.0.c"), 3)

    def test_missing(self) -> None:
        with self.assertRaises(MeasurementError):
            lookup_path({"a": 1}, "b")
        with self.assertRaises(MeasurementError):
            lookup_path({"a": [1]}, "a.5")


class TestHttpMeasurementSource(unittest.TestCase):
    def test_callback_uses_wall_time(self) -> None:
        spec = BenchmarkSpec("r", RemoteTarget("http://x/"), CallbackMeasurement())
        session = _session(_response(elapsed_ms=999.0))
        source = HttpMeasurementSource([spec], session=session, timeout=3)
        millis = source.measure(spec)
        self.assertGreaterEqual(millis, 0.0)
        self.assertLess(millis, 999.0)
        session.get.assert_called_once_with("http://x/", timeout=3)

    def test_performance_uses_elapsed(self) -> None:
        spec = BenchmarkSpec("r", RemoteTarget("http://x/"), PerformanceMeasurement())
        source = HttpMeasurementSource([spec], session=_session(_response(elapsed_ms=42.0)))
        self.assertAlmostEqual(source.measure(spec), 42.0)

    def test_expression_reads_json(self) -> None:
        spec = BenchmarkSpec(
            "l", LocalTarget("/bench/"), ExpressionMeasurement("timings.total")
        )
        session = _session(_response(json_data={"timings": {"total": 12.5}}))
        source = HttpMeasurementSource([spec], base_url="http://localhost:1", session=session)
        self.assertEqual(source.url_for(spec), "http://localhost:1/bench/")
        self.assertEqual(source.measure(spec), 12.5)

    def test_expression_rejects_bad_values(self) -> None:
        spec = BenchmarkSpec("r", RemoteTarget("http://x/"), ExpressionMeasurement("v"))
        for body in ({"v": "fast"}, {"v": -1}, {"v": True}, {"w": 1}, None):
            with self.subTest(body=body):
                source = HttpMeasurementSource([spec], session=_session(_response(json_data=body)))
                with self.assertRaises(MeasurementError):
                    source.measure(spec)

    def test_http_error_status(self) -> None:
        spec = make_remote_spec("r")
        source = HttpMeasurementSource([spec], session=_session(_response(status=500)))
        with self.assertRaises(MeasurementError) as ctx:
            source.measure(spec)
        self.assertIn("500", str(ctx.exception))

    def test_request_exceptions(self) -> None:
        spec = make_remote_spec("r")
        for error in (
            requests.Timeout("slow"),
            requests.ConnectionError("refused"),
            requests.RequestException("other"),
        ):
            with self.subTest(error=type(error).__name__):
                source = HttpMeasurementSource([spec], session=_session(error=error))
                with self.assertRaises(MeasurementError):
                    source.measure(spec)

    def test_local_without_base_url_fails_early(self) -> None:
        with self.assertRaises(ConfigError):
            HttpMeasurementSource([make_local_spec("l")], session=_session())


class TestCallbackMeasurementSource(unittest.TestCase):
    def test_result_reported_back(self) -> None:
        pending = PendingResult()
        triggered: list[tuple[str, int]] = []

        def trigger(spec: BenchmarkSpec, run_id: int) -> None:
            triggered.append((spec.name, run_id))
            pending.fulfill(run_id, 7.5)

        source = CallbackMeasurementSource(trigger, pending=pending, timeout=1.0)
        spec = make_remote_spec("a")
        self.assertEqual(source.measure(spec), 7.5)
        self.assertEqual(source.measure(spec), 7.5)
        self.assertEqual([name for name, _ in triggered], ["a", "a"])
        self.assertLess(triggered[0][1], triggered[1][1])

    def test_trigger_failure_frees_slot(self) -> None:
        def trigger(spec: BenchmarkSpec, run_id: int) -> None:
            raise RuntimeError("browser crashed")

        source = CallbackMeasurementSource(trigger, timeout=1.0)
        with self.assertRaises(MeasurementError):
            source.measure(make_remote_spec("a"))
        self.assertFalse(source.pending.pending)

    def test_no_report_times_out(self) -> None:
        source = CallbackMeasurementSource(lambda spec, run_id: None, timeout=0.01)
        with self.assertRaises(MeasurementError):
            source.measure(make_remote_spec("a"))
        self.assertFalse(source.pending.pending)


if __name__ == "__main__":
    unittest.main()
