"""Locate the Node.js runtime, the clawdbot entry artifact and pnpm.

Each lookup walks a fixed list of strategies and returns the first hit.
Results are cached on the resolver until :meth:`PathResolver.invalidate`
is called (e.g. after the user changes the override directory).

The search is synchronous (it may shell out to ``npm root -g``), so the
controller runs it in a worker thread.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from clawbar.gateway.shell import augmented_env, augmented_path

logger = logging.getLogger("clawbar.paths")

ENTRY_RELATIVE = Path("dist") / "index.js"
_DIGITS = re.compile(r"(\d+)")


@dataclass(frozen=True, slots=True)
class ResolvedPaths:
    runtime: Optional[Path] = None
    artifact: Optional[Path] = None

    @property
    def complete(self) -> bool:
        return self.runtime is not None and self.artifact is not None


def version_key(name: str) -> tuple:
    """Sort key comparing digit runs numerically: ``10.10`` > ``10.2`` > ``9.9``."""
    key = []
    for chunk in _DIGITS.split(name):
        if not chunk:
            continue
        if chunk.isdigit():
            key.append((0, int(chunk), ""))
        else:
            key.append((1, 0, chunk))
    return tuple(key)


def latest_version(names: Sequence[str]) -> Optional[str]:
    if not names:
        return None
    return max(names, key=version_key)


def is_script(artifact: Path) -> bool:
    """A ``.js`` artifact needs the runtime; anything else is executed directly."""
    return artifact.suffix == ".js"


def working_directory(artifact: Path) -> Path:
    """``<repo>/dist/index.js`` runs from ``<repo>``; otherwise the artifact's own dir."""
    parent = artifact.parent
    if parent.name == "dist":
        return parent.parent
    return parent


def validate_override(path: str | Path | None) -> bool:
    """True when *path* is a directory containing ``dist/index.js``."""
    if not path or not str(path).strip():
        return False
    return (Path(str(path)).expanduser() / ENTRY_RELATIVE).is_file()


class PathResolver:
    """Layered search for the paths needed to launch the gateway."""

    def __init__(
        self,
        home: Path | None = None,
        search_path: str | None = None,
        runtime_candidates: Sequence[Path] | None = None,
        artifact_candidates: Sequence[Path] | None = None,
        pnpm_candidates: Sequence[Path] | None = None,
    ) -> None:
        self._home = home or Path.home()
        self._search_path = search_path if search_path is not None else augmented_path()
        self._runtime_candidates = list(runtime_candidates) if runtime_candidates is not None else [
            Path("/usr/local/bin/node"),
            Path("/opt/homebrew/bin/node"),
            Path("/usr/bin/node"),
        ]
        self._artifact_candidates = list(artifact_candidates) if artifact_candidates is not None else [
            self._home / "Dev" / "clawdbot" / ENTRY_RELATIVE,
            self._home / "clawdbot" / ENTRY_RELATIVE,
            Path("/usr/local/lib/node_modules/clawdbot") / ENTRY_RELATIVE,
            self._home / ".npm-global" / "lib" / "node_modules" / "clawdbot" / ENTRY_RELATIVE,
        ]
        self._pnpm_candidates = list(pnpm_candidates) if pnpm_candidates is not None else [
            Path("/usr/local/bin/pnpm"),
            Path("/opt/homebrew/bin/pnpm"),
            self._home / ".local" / "share" / "pnpm" / "pnpm",
            self._home / ".pnpm" / "pnpm",
        ]
        self._cached: Optional[ResolvedPaths] = None
        self._cached_override: Optional[Path] = None

    # ── Public API ──────────────────────────────────────────────────

    def resolve(self, override: Path | None = None) -> ResolvedPaths:
        """Resolve both paths, reusing the cache while *override* is unchanged."""
        if self._cached is not None and self._cached_override == override:
            return self._cached
        paths = ResolvedPaths(
            runtime=self.resolve_runtime(),
            artifact=self.resolve_entry_artifact(override),
        )
        logger.debug("detected node path: %s", paths.runtime)
        logger.debug("detected script path: %s", paths.artifact)
        self._cached = paths
        self._cached_override = override
        return paths

    def invalidate(self) -> None:
        self._cached = None
        self._cached_override = None

    def resolve_runtime(self) -> Optional[Path]:
        found = self._which("node")
        if found:
            return found

        nvm_node = self._latest_nvm_node()
        if nvm_node:
            return nvm_node

        return self._first_existing(self._runtime_candidates)

    def resolve_entry_artifact(self, override: Path | None = None) -> Optional[Path]:
        if override is not None:
            if validate_override(override):
                return override.expanduser() / ENTRY_RELATIVE
            logger.info("override %s has no %s, ignoring", override, ENTRY_RELATIVE)

        found = self._which("clawdbot")
        if found:
            return found

        found = self._first_existing(self._artifact_candidates)
        if found:
            return found

        return self._npm_global_artifact()

    def resolve_package_manager(self) -> Optional[Path]:
        found = self._which("pnpm")
        if found:
            return found
        return self._first_existing(self._pnpm_candidates)

    # ── Internals ───────────────────────────────────────────────────

    def _which(self, name: str) -> Optional[Path]:
        found = shutil.which(name, path=self._search_path)
        return Path(found) if found else None

    @staticmethod
    def _first_existing(candidates: Sequence[Path]) -> Optional[Path]:
        for path in candidates:
            if path.exists():
                return path
        return None

    def _latest_nvm_node(self) -> Optional[Path]:
        versions_dir = self._home / ".nvm" / "versions" / "node"
        if not versions_dir.is_dir():
            return None
        try:
            names = [p.name for p in versions_dir.iterdir() if p.is_dir()]
        except OSError:
            return None
        latest = latest_version(names)
        if latest is None:
            return None
        node = versions_dir / latest / "bin" / "node"
        return node if node.exists() else None

    def _npm_global_artifact(self) -> Optional[Path]:
        npm = self._which("npm")
        if npm is None:
            return None
        try:
            proc = subprocess.run(
                [str(npm), "root", "-g"],
                capture_output=True,
                text=True,
                timeout=10,
                env=augmented_env(),
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("npm root -g failed: %s", exc)
            return None
        if proc.returncode != 0 or not proc.stdout.strip():
            return None
        candidate = Path(proc.stdout.strip()) / "clawdbot" / ENTRY_RELATIVE
        return candidate if candidate.exists() else None
