"""Tests for pacer.configfile — benchmark documents and --package-version flags."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pacer.configfile import (
    MAX_EXPAND_DEPTH,
    apply_package_versions,
    config_from_file,
    expand_benchmark,
    is_http_url,
    load_config_file,
    parse_config_file,
    parse_package_versions,
    url_path_from_local_path,
)
from pacer.errors import ConfigError, ResolutionError
from pacer.specs import (
    BrowserConfig,
    CallbackMeasurement,
    ExpressionMeasurement,
    LocalTarget,
    PackageVersion,
    PerformanceMeasurement,
    RemoteTarget,
)

from pacer_test_helpers import make_bench_tree, make_local_spec, make_remote_spec, write_config


class BenchTreeTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = make_bench_tree(Path(self._tmp.name).resolve())

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def parse(self, data: dict):  # type: ignore[no-untyped-def]
        return parse_config_file(data, config_dir=self.root)


class TestParseConfigFile(BenchTreeTestCase):
    def test_minimal(self) -> None:
        config = self.parse({"benchmarks": [{"url": "mybench"}]})
        self.assertEqual(config.root, self.root)
        self.assertEqual(len(config.benchmarks), 1)
        spec = config.benchmarks[0]
        self.assertEqual(spec.name, "/mybench/")
        self.assertEqual(spec.target, LocalTarget(url_path="/mybench/"))
        self.assertEqual(spec.measurement, CallbackMeasurement())
        self.assertEqual(spec.browser, BrowserConfig())

    def test_remote_defaults_to_first_paint(self) -> None:
        config = self.parse({"benchmarks": [{"url": "https://example.com/"}]})
        spec = config.benchmarks[0]
        self.assertEqual(spec.target, RemoteTarget("https://example.com/"))
        self.assertEqual(spec.measurement, PerformanceMeasurement())
        self.assertEqual(spec.name, "https://example.com/")

    def test_query_string_kept(self) -> None:
        config = self.parse({"benchmarks": [{"url": "mylib/bench/?size=10", "name": "x"}]})
        target = config.benchmarks[0].target
        assert isinstance(target, LocalTarget)
        self.assertEqual(target.url_path, "/mylib/bench/")
        self.assertEqual(target.query_string, "?size=10")

    def test_file_path(self) -> None:
        config = self.parse({"benchmarks": [{"url": "mylib/other/page.html"}]})
        self.assertEqual(config.benchmarks[0].name, "/mylib/other/page.html")

    def test_top_level_settings(self) -> None:
        config = self.parse(
            {
                "sampleSize": 20,
                "timeout": 1,
                "horizons": ["+1ms", "0%"],
                "installRoot": "installs",
                "forceCleanInstall": True,
                "benchmarks": [{"url": "mybench"}],
            }
        )
        self.assertEqual(config.sample_size, 20)
        self.assertEqual(config.timeout, 1.0)
        self.assertEqual(config.horizons.absolute, (1.0,))
        self.assertEqual(config.horizons.relative, (0.0,))
        self.assertEqual(config.install_root, self.root / "installs")
        self.assertTrue(config.force_clean_install)

    def test_measurements_and_browsers(self) -> None:
        config = self.parse(
            {
                "benchmarks": [
                    {
                        "url": "mybench",
                        "measurement": "global",
                        "measurementExpression": "result.total",
                        "browser": "firefox-headless",
                    },
                    {
                        "url": "mybench",
                        "measurement": {"mode": "performance", "entryName": "render"},
                        "browser": {"name": "chrome", "windowSize": {"width": 800, "height": 600}},
                    },
                ]
            }
        )
        first, second = config.benchmarks
        self.assertEqual(first.measurement, ExpressionMeasurement("result.total"))
        self.assertEqual(first.browser, BrowserConfig(name="firefox", headless=True))
        self.assertEqual(second.measurement, PerformanceMeasurement("render"))
        self.assertEqual(second.browser.window_size, (800, 600))

    def test_package_versions_object(self) -> None:
        config = self.parse(
            {
                "benchmarks": [
                    {
                        "url": "mylib/bench",
                        "packageVersions": {"label": "v2", "dependencies": {"mylib": "2.0.0"}},
                    }
                ]
            }
        )
        target = config.benchmarks[0].target
        assert isinstance(target, LocalTarget)
        self.assertEqual(target.version, PackageVersion("v2", {"mylib": "2.0.0"}))
        self.assertTrue(target.needs_install)

    def test_errors(self) -> None:
        cases = {
            "not a mapping": [],
            "unknown key": {"benchmarks": [{"url": "mybench"}], "color": "red"},
            "no benchmarks": {"benchmarks": []},
            "benchmarks not list": {"benchmarks": {"url": "mybench"}},
            "sample size": {"sampleSize": 1, "benchmarks": [{"url": "mybench"}]},
            "timeout": {"timeout": -1, "benchmarks": [{"url": "mybench"}]},
            "horizon": {"horizons": ["4"], "benchmarks": [{"url": "mybench"}]},
            "benchmark key": {"benchmarks": [{"url": "mybench", "colour": 1}]},
            "no url": {"benchmarks": [{"name": "x"}]},
            "browser": {"benchmarks": [{"url": "mybench", "browser": "netscape"}]},
            "measurement": {"benchmarks": [{"url": "mybench", "measurement": "vibes"}]},
            "remote versions": {
                "benchmarks": [
                    {"url": "http://example.com", "packageVersions": {"label": "v1"}}
                ]
            },
            "default with overrides": {
                "benchmarks": [
                    {
                        "url": "mylib/bench",
                        "packageVersions": {"label": "default", "dependencies": {"mylib": "2"}},
                    }
                ]
            },
        }
        for label, data in cases.items():
            with self.subTest(label):
                with self.assertRaises(ConfigError):
                    self.parse(data)  # type: ignore[arg-type]

    def test_error_names_entry(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            self.parse({"benchmarks": [{"url": "mybench"}, {"name": "x"}]})
        self.assertIn("benchmarks[1]", str(ctx.exception))
        self.assertIn("No URL specified", str(ctx.exception))

    def test_unresolvable_paths(self) -> None:
        for url in ("missing", "nodir", "../outside"):
            with self.subTest(url=url):
                with self.assertRaises(ResolutionError):
                    self.parse({"benchmarks": [{"url": url}]})


class TestExpand(BenchTreeTestCase):
    def test_no_expand(self) -> None:
        self.assertEqual(expand_benchmark({"url": "a"}), [{"url": "a"}])

    def test_child_overrides_parent(self) -> None:
        result = expand_benchmark(
            {"url": "a", "browser": "chrome", "expand": [{"browser": "firefox"}, {}]}
        )
        self.assertEqual(result, [{"url": "a", "browser": "firefox"}, {"url": "a", "browser": "chrome"}])

    def test_cartesian_nesting(self) -> None:
        entry = {
            "url": "mybench",
            "expand": [
                {"browser": "chrome", "expand": [{"name": "c1"}, {"name": "c2"}]},
                {"browser": "firefox", "expand": [{"name": "f1"}, {"name": "f2"}]},
            ],
        }
        config = self.parse({"benchmarks": [entry]})
        self.assertEqual([s.name for s in config.benchmarks], ["c1", "c2", "f1", "f2"])
        self.assertEqual(
            [s.browser.name for s in config.benchmarks], ["chrome", "chrome", "firefox", "firefox"]
        )

    def test_url_supplied_by_child(self) -> None:
        config = self.parse(
            {"benchmarks": [{"name": "n", "expand": [{"url": "mybench"}, {"url": "mylib/bench"}]}]}
        )
        self.assertEqual(len(config.benchmarks), 2)

    def test_depth_limit(self) -> None:
        entry: dict = {"url": "a"}
        for _ in range(MAX_EXPAND_DEPTH + 2):
            entry = {"expand": [entry]}
        with self.assertRaises(ConfigError):
            expand_benchmark(entry)

    @patch("pacer.configfile.MAX_EXPANDED_BENCHMARKS", 3)
    def test_total_limit_across_entries(self) -> None:
        entry = {"url": "mybench", "expand": [{"name": "a"}, {"name": "b"}]}
        with self.assertRaises(ConfigError) as ctx:
            self.parse({"benchmarks": [entry, dict(entry)]})
        self.assertIn("benchmarks[1]", str(ctx.exception))
        self.assertIn("more than 3 benchmarks", str(ctx.exception))

    def test_expand_must_be_list(self) -> None:
        with self.assertRaises(ConfigError):
            expand_benchmark({"url": "a", "expand": {"url": "b"}})


class TestLocalPaths(BenchTreeTestCase):
    def test_directory_gets_trailing_slash(self) -> None:
        self.assertEqual(url_path_from_local_path(self.root, "mybench"), "/mybench/")
        self.assertEqual(url_path_from_local_path(self.root, "mybench/"), "/mybench/")

    def test_file(self) -> None:
        self.assertEqual(
            url_path_from_local_path(self.root, "mylib/bench/index.html"),
            "/mylib/bench/index.html",
        )

    def test_is_http_url(self) -> None:
        self.assertTrue(is_http_url("http://x"))
        self.assertTrue(is_http_url("https://x"))
        self.assertFalse(is_http_url("mybench"))
        self.assertFalse(is_http_url("ftp://x"))


class TestLoadConfigFile(BenchTreeTestCase):
    def test_json(self) -> None:
        path = write_config(self.root / "bench.json", {"benchmarks": [{"url": "mybench"}]})
        config = config_from_file(path)
        self.assertEqual(config.benchmarks[0].name, "/mybench/")

    def test_yaml(self) -> None:
        path = self.root / "bench.yaml"
        path.write_text(
            "sampleSize: 5\nbenchmarks:\n  - url: mybench\n    name: yaml bench\n",
            encoding="utf-8",
        )
        config = config_from_file(path)
        self.assertEqual(config.sample_size, 5)
        self.assertEqual(config.benchmarks[0].name, "yaml bench")

    def test_root_relative_to_file(self) -> None:
        sub = self.root / "configs"
        sub.mkdir()
        path = write_config(sub / "bench.json", {"root": "..", "benchmarks": [{"url": "mybench"}]})
        self.assertEqual(config_from_file(path).root, self.root)

    def test_bad_syntax(self) -> None:
        path = self.root / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config_file(path)

    def test_missing(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_config_file(self.root / "nope.json")


class TestPackageVersionFlags(unittest.TestCase):
    def test_parse(self) -> None:
        versions = parse_package_versions(
            ["mylib/v1=mylib@1.0.0", "mylib/v2=mylib@2.0.0,dep@^3", "other/default"]
        )
        self.assertEqual(
            versions,
            {
                "mylib": [
                    PackageVersion("v1", {"mylib": "1.0.0"}),
                    PackageVersion("v2", {"mylib": "2.0.0", "dep": "^3"}),
                ],
                "other": [PackageVersion("default", {})],
            },
        )

    def test_scoped_package(self) -> None:
        versions = parse_package_versions(["mylib/next=@scope/pkg@1.2.3"])
        self.assertEqual(versions["mylib"][0].dependency_overrides, {"@scope/pkg": "1.2.3"})

    def test_invalid(self) -> None:
        for flag in ("mylib", "mylib/v1", "mylib/v1=mylib", "mylib/v1=mylib@1,"):
            with self.subTest(flag=flag):
                with self.assertRaises(ConfigError):
                    parse_package_versions([flag])

    def test_duplicate_label(self) -> None:
        with self.assertRaises(ConfigError):
            parse_package_versions(["mylib/v1=mylib@1.0.0", "mylib/v1=mylib@1.0.1"])

    def test_apply(self) -> None:
        versions = parse_package_versions(["mylib/default", "mylib/v2=mylib@2.0.0"])
        specs = [
            make_local_spec("bench", "/mylib/bench/"),
            make_local_spec("other", "/mybench/"),
            make_remote_spec("remote"),
            make_local_spec("pinned", "/mylib/bench/", label="v9", dependencies={"mylib": "9"}),
        ]
        result = apply_package_versions(specs, versions)
        self.assertEqual(
            [s.name for s in result], ["bench", "bench [@v2]", "other", "remote", "pinned"]
        )
        self.assertEqual(result[0].version_label, "default")
        self.assertEqual(result[1].version_label, "v2")
        self.assertEqual(result[4].version_label, "v9")


if __name__ == "__main__":
    unittest.main()
