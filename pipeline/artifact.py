#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Marker-block artifact writer for web-server config files.

- Replaces the lines between `# BEGIN <marker>` and `# END <marker>` in place
- Appends a new block when the markers are missing
- Writes atomically (temp file in the same directory, then os.replace)
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import List, Protocol, Sequence, Union

from utils.logger import get_logger

PathLike = Union[str, Path]


class ArtifactWriter(Protocol):
    def path_exists(self, path: PathLike) -> bool:
        ...

    def is_writable(self, path: PathLike) -> bool:
        ...

    def write_marked_block(self, path: PathLike, marker: str, lines: Sequence[str]) -> bool:
        ...


def begin_marker(marker: str) -> str:
    return f"# BEGIN {marker}"


def end_marker(marker: str) -> str:
    return f"# END {marker}"


def replace_marked_block(existing: List[str], marker: str, lines: Sequence[str]) -> List[str]:
    """Return ``existing`` with the marker block body swapped for ``lines``."""
    begin, end = begin_marker(marker), end_marker(marker)
    block = [begin, *lines, end]

    start = stop = None
    for index, line in enumerate(existing):
        stripped = line.strip()
        if start is None and stripped == begin:
            start = index
        elif start is not None and stripped == end:
            stop = index
            break

    if start is None or stop is None:
        if existing and existing[-1].strip():
            return [*existing, "", *block]
        return [*existing, *block]
    return [*existing[:start], *block, *existing[stop + 1:]]


class FileArtifactWriter:
    def __init__(self, log_level: str = "INFO") -> None:
        self.logger = get_logger("artifact.writer", log_level, "artifact.log")

    def path_exists(self, path: PathLike) -> bool:
        return Path(path).is_file()

    def is_writable(self, path: PathLike) -> bool:
        target = Path(path)
        # os.replace needs write access to the directory as well as the file
        return target.is_file() and os.access(target, os.W_OK) and os.access(target.parent, os.W_OK)

    def read_text(self, path: PathLike) -> str:
        return Path(path).read_text(encoding="utf-8")

    def has_marked_block(self, path: PathLike, marker: str) -> bool:
        if not self.path_exists(path):
            return False
        try:
            contents = self.read_text(path)
        except OSError as e:
            self.logger.warning("Could not read %s: %s", path, e)
            return False
        return begin_marker(marker) in contents and end_marker(marker) in contents

    def write_marked_block(self, path: PathLike, marker: str, lines: Sequence[str]) -> bool:
        target = Path(path)
        if not self.path_exists(target) or not self.is_writable(target):
            self.logger.error("Refusing to write %s: missing or not writable", target)
            return False

        try:
            existing = self.read_text(target).splitlines()
            updated = replace_marked_block(existing, marker, lines)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write("\n".join(updated) + "\n")
                os.chmod(tmp_name, target.stat().st_mode & 0o777)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            self.logger.error("Failed to write marker block '%s' to %s: %s", marker, target, e, exc_info=True)
            return False

        self.logger.info("Wrote %d lines into marker block '%s' of %s", len(lines), marker, target)
        return True


__all__ = [
    "ArtifactWriter",
    "FileArtifactWriter",
    "replace_marked_block",
    "begin_marker",
    "end_marker",
]
