"""Zip helpers shared by the archive task and the repository cache."""

from __future__ import annotations

import os
import zipfile
from pathlib import Path


def write_archive(source: Path, target: Path, *, comment: bytes = b"") -> Path:
    """Write ``source`` (file or directory tree) into a new zip archive at ``target``.

    Directory trees are stored relative to ``source``; a single file is stored
    under its own name. Empty directories are kept as explicit entries.
    """

    target.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(target, "x", compression=zipfile.ZIP_DEFLATED) as archive:
        if comment:
            archive.comment = comment
        if not source.is_dir():
            archive.write(source, arcname=source.name)
            return target

        for current, dirnames, filenames in os.walk(source):
            dirnames.sort()
            base = Path(current)
            relative = base.relative_to(source)
            if relative.parts and not dirnames and not filenames:
                archive.write(base, arcname=f"{relative.as_posix()}/")
            for name in sorted(filenames):
                path = base / name
                archive.write(path, arcname=(relative / name).as_posix())
    return target


def read_comment(path: Path) -> bytes:
    """Return the archive comment, or empty bytes when ``path`` is not a zip archive."""

    if not path.is_file() or not zipfile.is_zipfile(path):
        return b""
    with zipfile.ZipFile(path) as archive:
        return archive.comment
