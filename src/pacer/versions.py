"""Install planning for package-version overrides.

Groups local benchmark specs that need the same isolated dependency set,
and produces one content-addressed ``InstallPlan`` per unique set.  The
plan directory name is a SHA-256 over the resolver version, the base
manifest path and the merged dependency list, so changing any of them
produces a fresh directory while identical inputs always reuse one.

Plans are pure data; :mod:`pacer.install` materializes them.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pacer import __version__
from pacer.errors import ConfigError, ResolutionError
from pacer.logging import get_logger
from pacer.specs import BenchmarkSpec, LocalTarget

log = get_logger("versions")

RESOLVER_VERSION = __version__
MANIFEST_FILE = "package.json"
DEPENDENCY_DIR = "node_modules"


# ---------------------------------------------------------------------------
# Plan data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MountPoint:
    """Maps a URL path prefix to a directory on disk."""

    url_path: str
    disk_path: Path

    def to_dict(self) -> dict[str, str]:
        return {"urlPath": self.url_path, "diskPath": str(self.disk_path)}


@dataclass
class InstallPlan:
    """One isolated dependency installation shared by ≥1 specs."""

    plan_id: str
    install_dir: Path
    manifest: dict[str, Any]
    label: str
    manifest_dir: Path
    specs: list[BenchmarkSpec] = field(default_factory=list)

    @property
    def dependencies(self) -> dict[str, str]:
        return dict(self.manifest.get("dependencies", {}))


@dataclass
class ServerPlan:
    """Specs served with one set of mount points."""

    specs: list[BenchmarkSpec] = field(default_factory=list)
    installs: list[InstallPlan] = field(default_factory=list)
    mount_points: list[MountPoint] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "specs": [s.name for s in self.specs],
            "installs": [
                {"id": p.plan_id, "installDir": str(p.install_dir), "manifest": p.manifest}
                for p in self.installs
            ],
            "mountPoints": [m.to_dict() for m in self.mount_points],
        }


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def hash_strings(*parts: str) -> str:
    """Stable SHA-256 hex digest over several strings.

    Each part is length-prefixed so ``("ab", "c")`` and ``("a", "bc")``
    hash differently.
    """
    digest = hashlib.sha256()
    for part in parts:
        encoded = part.encode("utf-8")
        digest.update(str(len(encoded)).encode("ascii"))
        digest.update(b":")
        digest.update(encoded)
    return digest.hexdigest()


def serialize_dependencies(dependencies: dict[str, str]) -> str:
    """Canonical serialization of a dependency map (sorted pairs)."""
    return json.dumps(sorted([name, version] for name, version in dependencies.items()))


# ---------------------------------------------------------------------------
# Manifest lookup
# ---------------------------------------------------------------------------


def find_manifest_dir(start: Path, root: Path) -> Path:
    """Return the nearest ancestor of ``start`` that holds a manifest.

    The search includes ``root`` itself but never goes above it, since
    nothing outside the root can be served.

    Raises:
        ResolutionError: If no ancestor up to ``root`` has a manifest.
    """
    root = root.resolve()
    current = start if start.is_dir() else start.parent
    current = current.resolve()
    while current == root or root in current.parents:
        if (current / MANIFEST_FILE).is_file():
            return current
        current = current.parent
    raise ResolutionError(
        f"Could not find a {MANIFEST_FILE} for {start} in any directory up to {root}."
    )


def read_manifest(manifest_dir: Path) -> dict[str, Any]:
    """Read the manifest in ``manifest_dir``.

    Raises:
        ResolutionError: If it cannot be read or parsed.
    """
    path = manifest_dir / MANIFEST_FILE
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ResolutionError(f"Could not read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ResolutionError(f"{path} is not a JSON object.")
    return data


def _url_path_for_dir(root: Path, directory: Path) -> str:
    relative = directory.relative_to(root)
    if not relative.parts:
        return "/"
    return "/" + relative.as_posix()


def _disk_path_for_target(root: Path, target: LocalTarget) -> Path:
    return root / target.url_path.lstrip("/")


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def make_install_plans(
    root: Path,
    install_root: Path,
    specs: list[BenchmarkSpec],
) -> list[ServerPlan]:
    """Group specs into server plans with deduplicated installs.

    - Remote specs need no server and are skipped.
    - Local specs without a version (or with the ``default`` label) share
      one plan that serves ``root`` at ``/``.
    - Other local specs are grouped by (manifest directory, label).  Each
      group gets one ``InstallPlan`` whose dependencies are the base
      manifest's dependencies overlaid with the overrides, and mounts the
      isolated ``node_modules`` over the manifest directory's one.

    Raises:
        ConfigError: If one label maps to different overrides for the same
            manifest directory.
        ResolutionError: If a manifest cannot be found or read.
    """
    root = root.resolve()
    install_root = install_root.resolve()

    default_specs: list[BenchmarkSpec] = []
    groups: dict[tuple[Path, str], InstallPlan] = {}
    group_overrides: dict[tuple[Path, str], dict[str, str]] = {}

    for spec in specs:
        target = spec.target
        if not isinstance(target, LocalTarget):
            continue
        if not target.needs_install:
            default_specs.append(spec)
            continue
        assert target.version is not None

        manifest_dir = find_manifest_dir(_disk_path_for_target(root, target), root)
        key = (manifest_dir, target.version.label)

        existing = groups.get(key)
        if existing is not None:
            if group_overrides[key] != target.version.dependency_overrides:
                raise ConfigError(
                    f"Package-version label '{target.version.label}' for {manifest_dir} "
                    f"is used with different dependencies (benchmark '{spec.name}')."
                )
            existing.specs.append(spec)
            continue

        base = read_manifest(manifest_dir)
        base_deps = base.get("dependencies") or {}
        if not isinstance(base_deps, dict):
            raise ResolutionError(f"{manifest_dir / MANIFEST_FILE}: 'dependencies' is not a map.")
        dependencies = {**base_deps, **target.version.dependency_overrides}

        plan_id = hash_strings(
            RESOLVER_VERSION,
            str(manifest_dir / MANIFEST_FILE),
            serialize_dependencies(dependencies),
        )
        groups[key] = InstallPlan(
            plan_id=plan_id,
            install_dir=install_root / plan_id,
            manifest={"private": True, "dependencies": dependencies},
            label=target.version.label,
            manifest_dir=manifest_dir,
            specs=[spec],
        )
        group_overrides[key] = dict(target.version.dependency_overrides)
        log.debug(
            "Planned install %s for %s @%s", plan_id[:12], manifest_dir, target.version.label
        )

    plans: list[ServerPlan] = []
    if default_specs:
        plans.append(
            ServerPlan(specs=default_specs, mount_points=[MountPoint("/", root)])
        )

    for plan in groups.values():
        dep_url = _url_path_for_dir(root, plan.manifest_dir).rstrip("/") + "/" + DEPENDENCY_DIR
        plans.append(
            ServerPlan(
                specs=list(plan.specs),
                installs=[plan],
                mount_points=[
                    MountPoint(dep_url, plan.install_dir / DEPENDENCY_DIR),
                    MountPoint("/", root),
                ],
            )
        )
    return plans


def unique_installs(plans: list[ServerPlan]) -> list[InstallPlan]:
    """All install plans, each plan id once, in first-seen order."""
    seen: dict[str, InstallPlan] = {}
    for server_plan in plans:
        for install in server_plan.installs:
            seen.setdefault(install.plan_id, install)
    return list(seen.values())


def resolve_mount(mount_points: list[MountPoint], url_path: str) -> Path | None:
    """Map a request path to disk using the first matching mount point.

    A mount matches when its ``url_path`` equals the request path or is a
    directory prefix of it.
    """
    for mount in mount_points:
        prefix = mount.url_path.rstrip("/")
        if prefix == "":
            rest = url_path.lstrip("/")
        elif url_path == prefix or url_path.startswith(prefix + "/"):
            rest = url_path[len(prefix) :].lstrip("/")
        else:
            continue
        return mount.disk_path / rest if rest else mount.disk_path
    return None
