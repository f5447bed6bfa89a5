"""
Skill bundle (zip) handling.

- looks_like_zip(): PK signature sniffing
- iter_entries(): iterate archive entries as ArchiveEntry objects
- find_primary_entry() / find_license_entry(): locate skill.md and the license
- extract_entry(): write one entry below a destination directory

Extraction never writes outside the destination and never overwrites an
existing file unless explicitly asked to.
"""

from __future__ import annotations

import io
import logging
import posixpath
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from dsoul.skills.errors import FilesystemError, NotASkillError
from dsoul.skills.models import SKILL_FILENAME

logger = logging.getLogger(__name__)

ZIP_SIGNATURE = b"PK"

LICENSE_BASENAMES = {"license.md", "license", "license.txt"}


def looks_like_zip(data: bytes) -> bool:
    return len(data) >= 2 and data[:2] == ZIP_SIGNATURE


@dataclass
class ArchiveEntry:
    """One file or directory inside a bundle"""

    name: str  # normalised posix path inside the archive
    is_dir: bool
    size: int
    _archive: zipfile.ZipFile
    _info: zipfile.ZipInfo

    @property
    def basename(self) -> str:
        return posixpath.basename(self.name.rstrip("/"))

    @property
    def depth(self) -> int:
        return self.name.rstrip("/").count("/")

    def is_primary(self) -> bool:
        return not self.is_dir and self.basename.lower() == SKILL_FILENAME

    def is_license(self) -> bool:
        return not self.is_dir and self.basename.lower() in LICENSE_BASENAMES

    def read(self) -> bytes:
        return self._archive.read(self._info)


class ExtractResult(str, Enum):
    WRITTEN = "written"
    SKIPPED_EXISTS = "skipped_exists"
    DIRECTORY = "directory"


def _normalise(name: str) -> str:
    return name.replace("\\", "/")


def iter_entries(data: bytes) -> Iterator[ArchiveEntry]:
    """
    Iterate over the entries of a zip payload

    Raises:
        NotASkillError: Payload is not a readable zip archive
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data), "r")
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise NotASkillError(f"Not a readable zip archive: {e}")

    with archive:
        for info in archive.infolist():
            name = _normalise(info.filename)
            if not name or name in ("/", "./"):
                continue
            yield ArchiveEntry(
                name=name,
                is_dir=info.is_dir(),
                size=info.file_size,
                _archive=archive,
                _info=info,
            )


def find_primary_entry(data: bytes) -> Optional[str]:
    """Name of the skill.md entry (case-insensitive), shallowest first"""
    candidates = [entry for entry in iter_entries(data) if entry.is_primary()]
    if not candidates:
        return None
    return min(candidates, key=lambda e: (e.depth, e.name)).name


def read_primary_document(data: bytes) -> Optional[str]:
    """Decoded text of the primary document, None when absent"""
    primary = find_primary_entry(data)
    if primary is None:
        return None
    for entry in iter_entries(data):
        if entry.name == primary:
            return entry.read().decode("utf-8", errors="replace")
    return None


def find_license_entry(data: bytes) -> Optional[str]:
    for entry in iter_entries(data):
        if entry.is_license():
            return entry.name
    return None


def destination_for(entry: ArchiveEntry, dest_dir: Path) -> Path:
    """
    Resolve where an entry lands below dest_dir

    The primary document always lands under the canonical filename.

    Raises:
        FilesystemError: Absolute path or traversal outside dest_dir
    """
    name = entry.name.rstrip("/")
    if name.startswith("/") or (len(name) > 1 and name[1] == ":"):
        raise FilesystemError(dest_dir / name, "Archive contains an absolute path entry")

    parts = [p for p in name.split("/") if p not in ("", ".")]
    if entry.is_primary():
        parts[-1] = SKILL_FILENAME

    target = dest_dir.joinpath(*parts).resolve()
    base = dest_dir.resolve()
    if target != base and base not in target.parents:
        raise FilesystemError(dest_dir / name, "Archive entry escapes the skill folder")
    return target


def extract_entry(entry: ArchiveEntry, dest_dir: Path, overwrite: bool = False) -> ExtractResult:
    """
    Extract one entry below dest_dir

    Args:
        entry: Archive entry from iter_entries()
        dest_dir: Skill folder
        overwrite: Replace an existing file (only after a fresh wipe)

    Returns:
        What happened to the entry

    Raises:
        FilesystemError: Unsafe entry path or write failure
    """
    target = destination_for(entry, dest_dir)

    if entry.is_dir:
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(target, f"Cannot create directory ({e.strerror or e})")
        return ExtractResult.DIRECTORY

    destination_exists = target.exists()
    if destination_exists and not overwrite:
        logger.debug(f"Skipping {entry.name}: {target} already exists")
        return ExtractResult.SKIPPED_EXISTS

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(entry.read())
    except OSError as e:
        raise FilesystemError(target, f"Cannot write file ({e.strerror or e})")
    return ExtractResult.WRITTEN


__all__ = [
    "ZIP_SIGNATURE",
    "ArchiveEntry",
    "ExtractResult",
    "looks_like_zip",
    "iter_entries",
    "find_primary_entry",
    "read_primary_document",
    "find_license_entry",
    "destination_for",
    "extract_entry",
]
