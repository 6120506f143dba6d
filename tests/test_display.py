"""Tests for pacer.display — terminal formatting."""

from __future__ import annotations

import unittest
from pathlib import Path

from pacer.display import (
    format_difference,
    format_duration,
    format_outcome,
    format_plan,
    format_session,
    format_table,
    split_dimensions,
)
from pacer.results import SampleSet, make_session_result
from pacer.stats import ConfidenceInterval, Difference, Horizons
from pacer.versions import InstallPlan, MountPoint, ServerPlan

from pacer_test_helpers import make_local_spec, make_remote_spec

FOO = [5.0] * 25 + [15.0] * 25
BAR = [15.0] * 25 + [25.0] * 25


def make_session(**kwargs: object):  # type: ignore[no-untyped-def]
    sets = []
    for name, values in (("foo", FOO), ("bar", BAR)):
        sample_set = SampleSet(name=name, spec=make_remote_spec(name))
        for idx, value in enumerate(values):
            sample_set.append(value, idx + 1)
        sets.append(sample_set)
    return make_session_result(sets, Horizons(relative=(0.0,)), rounds=50, **kwargs)


class TestFormatTable(unittest.TestCase):
    def test_alignment(self) -> None:
        text = format_table(["Name", "Value"], [["a", "1"], ["long name", "100"]], alignments=["l", "r"])
        lines = text.splitlines()
        self.assertEqual(len(lines), 4)
        self.assertTrue(lines[1].strip().startswith("─"))
        self.assertTrue(lines[2].endswith("    1"))
        self.assertTrue(lines[3].startswith("  long name"))

    def test_empty_headers(self) -> None:
        self.assertEqual(format_table([], []), "")

    def test_duration(self) -> None:
        self.assertEqual(format_duration(8.9), "8s")
        self.assertEqual(format_duration(83), "1m 23s")
        self.assertEqual(format_duration(4354), "1h 12m 34s")


class TestFormatDifference(unittest.TestCase):
    def test_slower(self) -> None:
        diff = Difference(ConfidenceInterval(1.0, 2.0), ConfidenceInterval(0.1, 0.2))
        self.assertEqual(format_difference(diff), "slower +10% - +20% (+1.0ms - +2.0ms)")

    def test_faster(self) -> None:
        diff = Difference(ConfidenceInterval(-2.0, -1.0), ConfidenceInterval(-0.2, -0.1))
        self.assertTrue(format_difference(diff).startswith("faster -20% - -10%"))

    def test_unsure(self) -> None:
        diff = Difference(ConfidenceInterval(-1.0, 2.0), ConfidenceInterval(-0.1, 0.2))
        self.assertTrue(format_difference(diff).startswith("unsure"))

    def test_no_relative(self) -> None:
        diff = Difference(ConfidenceInterval(1.0, 2.0), None)
        self.assertEqual(format_difference(diff), "slower +1.0ms - +2.0ms")

    def test_unavailable(self) -> None:
        self.assertEqual(format_difference(None), "n/a")


class TestFormatSession(unittest.TestCase):
    def test_fixed_dimensions_pulled_out(self) -> None:
        session = make_session()
        fixed, varying = split_dimensions(session.results)
        self.assertEqual([d.label for d in fixed], ["Browser", "Measurement", "Sample size"])
        self.assertEqual([d.label for d in varying], ["Benchmark", "Avg time"])

    def test_table(self) -> None:
        text = format_session(make_session())
        self.assertIn("Browser:", text)
        self.assertIn("vs foo", text)
        self.assertIn("vs bar", text)
        self.assertIn("slower +68% - +132%", text)
        self.assertIn("faster -58% - -42%", text)
        self.assertIn("Lowest mean: foo; highest mean: bar.", text)
        self.assertIn("All differences resolved after 50 rounds.", text)

    def test_timeout_note(self) -> None:
        session = make_session(hit_timeout=True, timeout_minutes=3.0)
        self.assertIn("Hit timeout of 3 minutes", format_outcome(session))

    def test_interrupted_note(self) -> None:
        session = make_session(interrupted=True)
        self.assertIn("Interrupted after 50 rounds", format_session(session))

    def test_dropped_note(self) -> None:
        session = make_session()
        session.results[0].dropped = 2
        self.assertIn("2 sample(s) of foo could not be measured", format_session(session))

    def test_empty(self) -> None:
        session = make_session_result([], Horizons())
        self.assertEqual(format_session(session), "No results.")


class TestFormatPlan(unittest.TestCase):
    def test_plan(self) -> None:
        spec = make_local_spec("v2", "/mylib/bench/", label="v2", dependencies={"mylib": "2"})
        install = InstallPlan(
            plan_id="0123456789abcdef",
            install_dir=Path("/installs/0123456789abcdef"),
            manifest={"dependencies": {"mylib": "2"}},
            label="v2",
            manifest_dir=Path("/root/mylib"),
            specs=[spec],
        )
        plan = ServerPlan(
            specs=[spec],
            installs=[install],
            mount_points=[MountPoint("/", Path("/root"))],
        )
        text = format_plan([plan])
        self.assertIn("Server 1 (v2): 1 benchmark(s)", text)
        self.assertIn("install 0123456789ab", text)
        self.assertIn("mylib@2", text)
        self.assertIn("mount / → /root", text)

    def test_no_plans(self) -> None:
        self.assertEqual(format_plan([]), "Nothing to serve locally.")


if __name__ == "__main__":
    unittest.main()
