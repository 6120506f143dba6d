"""Materialize install plans on disk.

Each plan directory is named by its content hash.  Installation writes
the merged manifest (tagged with the resolver version) and runs the
install command in that directory.  If the directory already holds an
identical manifest the install is skipped, so re-running is a no-op;
``force_clean`` wipes and reinstalls unconditionally.
"""

from __future__ import annotations

import json
import os
import shlex
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any

from pacer.errors import InstallError
from pacer.logging import get_logger
from pacer.versions import MANIFEST_FILE, RESOLVER_VERSION, InstallPlan

log = get_logger("install")

VERSION_TAG = "__pacerVersion"


def tagged_manifest(plan: InstallPlan) -> dict[str, Any]:
    """The manifest as written to disk, tagged with the resolver version."""
    manifest = dict(plan.manifest)
    manifest[VERSION_TAG] = RESOLVER_VERSION
    return manifest


def _read_existing_manifest(install_dir: Path) -> dict[str, Any] | None:
    path = install_dir / MANIFEST_FILE
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        log.debug("Ignoring unreadable manifest %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


def is_installed(plan: InstallPlan) -> bool:
    """True if the plan directory holds a manifest identical to the plan's."""
    return _read_existing_manifest(plan.install_dir) == tagged_manifest(plan)


def ensure_installed(
    plan: InstallPlan,
    *,
    force_clean: bool = False,
    install_command: str = "npm install",
    timeout: int = 600,
) -> bool:
    """Install the plan's dependencies unless already present.

    Args:
        plan: The install plan to materialize.
        force_clean: Wipe and reinstall even if a matching install exists.
        install_command: Shell-style command run inside the install dir.
        timeout: Maximum seconds for the install command.

    Returns:
        True if an install ran, False if an existing install was reused.

    Raises:
        InstallError: If the install directory cannot be written, or the
            install command fails or times out.
    """
    install_dir = plan.install_dir

    if not force_clean and is_installed(plan):
        log.info("Reusing install %s (%s)", install_dir.name[:12], plan.label)
        return False

    log.info("Installing %s (%s) into %s ...", plan.label, plan.manifest_dir, install_dir)
    manifest_path = install_dir / MANIFEST_FILE
    try:
        if install_dir.exists():
            log.debug("Removing stale install directory %s", install_dir)
            shutil.rmtree(install_dir)
        install_dir.mkdir(parents=True, exist_ok=True)
        # Untagged until the install succeeds; a failed install is never reused.
        manifest_path.write_text(json.dumps(plan.manifest, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise InstallError(f"Could not prepare install directory {install_dir}: {exc}") from exc

    start = time.monotonic()
    try:
        proc = subprocess.run(
            shlex.split(install_command),
            cwd=str(install_dir),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=dict(os.environ),
        )
    except subprocess.TimeoutExpired as exc:
        raise InstallError(
            f"Install timed out after {timeout}s in {install_dir}"
        ) from exc
    except OSError as exc:
        raise InstallError(f"Could not run '{install_command}': {exc}") from exc

    if proc.returncode != 0:
        raise InstallError(
            f"'{install_command}' failed in {install_dir} (exit {proc.returncode}):\n"
            f"{proc.stderr.strip()}"
        )

    try:
        manifest_path.write_text(
            json.dumps(tagged_manifest(plan), indent=2) + "\n", encoding="utf-8"
        )
    except OSError as exc:
        raise InstallError(f"Could not write {manifest_path}: {exc}") from exc
    log.info("Installed %s in %.1fs", plan.label, time.monotonic() - start)
    return True


def install_all(
    plans: list[InstallPlan],
    *,
    force_clean: bool = False,
    install_command: str = "npm install",
    timeout: int = 600,
) -> int:
    """Ensure every plan is installed, each plan id at most once.

    Returns:
        The number of installs that actually ran.
    """
    done: set[str] = set()
    ran = 0
    for plan in plans:
        if plan.plan_id in done:
            continue
        done.add(plan.plan_id)
        if ensure_installed(
            plan,
            force_clean=force_clean,
            install_command=install_command,
            timeout=timeout,
        ):
            ran += 1
    return ran
