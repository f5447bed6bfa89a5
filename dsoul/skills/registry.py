"""Skill Registry - per-CID storage for installed skill lifecycle state.

This module provides:
- SkillRegistry class for record CRUD (get / put / delete / list_all)
- One JSON document per CID, so operations on different skills never race
- Raw payload storage next to the record (<cid>.zip or <cid>.md)
- Corrupt-record tolerance in list_all()

Storage layout (default ~/.dsoul/skills/):
    <cid>.json   SkillRecord (cid, kind, tags, active, installedPath, ...)
    <cid>.zip    original archive bytes for bundle skills
    <cid>.md     original bytes for single-file skills
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from dsoul.core.storage.paths import skills_data_dir
from dsoul.skills.errors import FilesystemError
from dsoul.skills.models import SkillRecord

logger = logging.getLogger(__name__)

# CIDs are base58/base32 strings; anything else must never become a path
SAFE_CID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


class SkillRegistry:
    """Lifecycle Tracker backed by one file per skill.

    Database location: ~/.dsoul/skills/
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """Initialize skill registry.

        Args:
            data_dir: Optional custom directory.
                      If None, uses skills_data_dir().
        """
        self.data_dir = Path(data_dir) if data_dir is not None else skills_data_dir()
        logger.debug(f"SkillRegistry initialized at: {self.data_dir}")

    def _record_path(self, cid: str) -> Path:
        if not SAFE_CID_PATTERN.match(cid or ""):
            raise ValueError(f"Invalid CID: {cid!r}")
        return self.data_dir / f"{cid}.json"

    def archive_path(self, cid: str) -> Path:
        return self._record_path(cid).with_suffix(".zip")

    def document_path(self, cid: str) -> Path:
        return self._record_path(cid).with_suffix(".md")

    def _write_atomic(self, path: Path, payload: bytes) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(payload)
            os.replace(tmp, path)
        except OSError as e:
            raise FilesystemError(path, f"Cannot write skill record ({e.strerror or e})")

    def get(self, cid: str) -> Optional[SkillRecord]:
        """Retrieve a record by CID.

        Returns:
            SkillRecord, or None if not found or unreadable
        """
        path = self._record_path(cid)
        if not path.exists():
            return None
        try:
            return SkillRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.error(f"Failed to read skill record {path}: {e}")
            return None

    def put(self, record: SkillRecord) -> None:
        """Insert or replace the record for record.cid.

        Raises:
            FilesystemError: If the record cannot be written
        """
        path = self._record_path(record.cid)
        payload = json.dumps(record.to_json_dict(), indent=2, ensure_ascii=False)
        self._write_atomic(path, payload.encode("utf-8"))
        logger.debug(f"Saved skill record: {record.cid}")

    def delete(self, cid: str) -> bool:
        """Delete a record and its stored payload.

        Returns:
            True if a record existed
        """
        path = self._record_path(cid)
        existed = path.exists()
        for target in (path, self.archive_path(cid), self.document_path(cid)):
            try:
                target.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise FilesystemError(target, f"Cannot delete skill record ({e.strerror or e})")

        if existed:
            logger.info(f"Deleted skill record {cid}")
        else:
            logger.warning(f"Skill {cid} not found for deletion")
        return existed

    def list_all(self) -> List[SkillRecord]:
        """All readable records, oldest first; corrupt files are skipped."""
        if not self.data_dir.exists():
            return []

        records: List[SkillRecord] = []
        for path in sorted(self.data_dir.glob("*.json")):
            try:
                records.append(SkillRecord.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValidationError, ValueError) as e:
                logger.warning(f"Skipping corrupt skill record {path.name}: {e}")
                continue
        records.sort(key=lambda r: r.created_at)
        return records

    def save_archive(self, cid: str, data: bytes) -> Path:
        path = self.archive_path(cid)
        self._write_atomic(path, data)
        return path

    def load_archive(self, cid: str) -> Optional[bytes]:
        return self._read_payload(self.archive_path(cid))

    def save_document(self, cid: str, data: bytes) -> Path:
        """Keep the exact bytes of a single-file skill; text is not re-encoded"""
        path = self.document_path(cid)
        self._write_atomic(path, data)
        return path

    def load_document(self, cid: str) -> Optional[bytes]:
        return self._read_payload(self.document_path(cid))

    @staticmethod
    def _read_payload(path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise FilesystemError(path, f"Cannot read stored payload ({e.strerror or e})")

    def set_tags(self, cid: str, add: Iterable[str] = (), remove: Iterable[str] = ()) -> Optional[SkillRecord]:
        """Add/remove user tags; returns the updated record or None if unknown"""
        record = self.get(cid)
        if record is None:
            return None
        tags = set(record.tags)
        tags.update(t.strip() for t in add if t.strip())
        tags.difference_update(t.strip() for t in remove)
        record.tags = sorted(tags)
        self.put(record)
        return record


__all__ = ["SkillRegistry"]
