"""Output sinks for generated files."""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from riptide.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def write(self, files: dict[str, str]) -> list[str]:
        ...


class MemorySink:
    """Collects generated files in memory (tests, check mode)."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}

    def write(self, files: dict[str, str]) -> list[str]:
        self.files.update(files)
        return sorted(files)


def _target(root: Path, name: str) -> Path:
    """Resolve name under root, rejecting anything that escapes it."""
    candidate = (root / name).resolve()
    if candidate != root and root not in candidate.parents:
        raise ConfigurationError(f"refusing to write {name!r} outside {root}")
    return candidate


class FilesystemSink:
    """Writes each file through a temp file and os.replace()."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def write(self, files: dict[str, str]) -> list[str]:
        targets = {name: _target(self.root, name) for name in sorted(files)}
        written: list[str] = []
        for name, target in targets.items():
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
                    handle.write(files[name])
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            logger.debug("wrote %s", target)
            written.append(name)
        return written


def stale_files(root: str | Path, files: dict[str, str]) -> list[str]:
    """Names whose on-disk content differs from the freshly rendered content."""
    base = Path(root).resolve()
    stale: list[str] = []
    for name in sorted(files):
        target = _target(base, name)
        try:
            current = target.read_text(encoding="utf-8")
        except FileNotFoundError:
            stale.append(name)
            continue
        if current != files[name]:
            stale.append(name)
    return stale
