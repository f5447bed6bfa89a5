"""Manifest Store: the dsoul.json ledger kept beside installed skills.

Document shape:
    {"skills": [{"cid": ..., "shortname": ..., "num": ..., "src": ..., "hostname": ...}]}

The manifest is what another dsoul process (e.g. a CLI run from a different
working directory) uses to learn what dsoul put in a folder. Writes are whole
document read-modify-write with no locking: two processes writing the same
folder at once can lose an update.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from dsoul.skills.errors import FilesystemError
from dsoul.skills.models import MANIFEST_FILENAME, ManifestEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ManifestStore:
    """Read and write dsoul.json in skills folders"""

    def __init__(self, filename: str = MANIFEST_FILENAME):
        self.filename = filename

    def path_for(self, directory: PathLike) -> Path:
        return Path(directory) / self.filename

    def read(self, directory: PathLike) -> List[ManifestEntry]:
        """Entries of a folder's manifest; missing or corrupt files read as empty"""
        path = self.path_for(directory)
        if not path.exists():
            return []

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable manifest {path}: {e}")
            return []

        raw_entries = data.get("skills") if isinstance(data, dict) else None
        if not isinstance(raw_entries, list):
            logger.warning(f"Ignoring manifest without a skills list: {path}")
            return []

        entries: List[ManifestEntry] = []
        seen = set()
        for raw in raw_entries:
            try:
                entry = ManifestEntry.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping invalid manifest entry in {path}: {e.errors()[0].get('msg')}")
                continue
            if entry.cid in seen:
                continue
            seen.add(entry.cid)
            entries.append(entry)
        return entries

    def find(self, directory: PathLike, cid: str) -> Optional[ManifestEntry]:
        for entry in self.read(directory):
            if entry.cid == cid:
                return entry
        return None

    def upsert(self, directory: PathLike, entry: ManifestEntry) -> None:
        """Replace the entry with the same cid, or append it"""
        entries = self.read(directory)
        for i, existing in enumerate(entries):
            if existing.cid == entry.cid:
                entries[i] = entry
                break
        else:
            entries.append(entry)
        self._write(directory, entries)
        logger.debug(f"Manifest {self.path_for(directory)}: upserted {entry.cid}")

    def remove(self, directory: PathLike, cid: str) -> bool:
        """Drop the entry for cid; True when something was removed"""
        path = self.path_for(directory)
        if not path.exists():
            return False
        entries = self.read(directory)
        remaining = [e for e in entries if e.cid != cid]
        if len(remaining) == len(entries):
            return False
        self._write(directory, remaining)
        logger.debug(f"Manifest {path}: removed {cid}")
        return True

    def _write(self, directory: PathLike, entries: List[ManifestEntry]) -> None:
        path = self.path_for(directory)
        document = {"skills": [e.to_json_dict() for e in entries]}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            raise FilesystemError(path, f"Cannot write manifest ({e.strerror or e})")


__all__ = ["ManifestStore"]
