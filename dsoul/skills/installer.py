"""
Skill Installer: put verified skills on disk and take them off again.

Key principles:
1. Stable folders: reinstalling an active skill into the same base directory
   wipes and reuses its subfolder, so updates keep their folder name
2. No clobbering: a new install whose folder name is taken gets _1, _2, ...
3. Non-destructive extraction: bundle entries never overwrite an existing
   file, except right after the idempotent wipe
4. State last: the registry record and dsoul.json are only written after
   every file is in place
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import List, Optional

from dsoul.skills.bundle import ExtractResult, destination_for, extract_entry, iter_entries
from dsoul.skills.errors import FilesystemError, NotConfigured
from dsoul.skills.manifest import ManifestStore
from dsoul.skills.models import (
    SKILL_FILENAME,
    InstalledPath,
    InstallResult,
    ManifestEntry,
    Provenance,
    SkillKind,
    SkillRecord,
    VerifiedArtifact,
)
from dsoul.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)

UNSAFE_NAME_PATTERN = re.compile(r'[<>:"/\\|?*\x00-\x1f\s]+')


def sanitize_folder_name(name: str) -> str:
    """Collapse path-unsafe characters and whitespace runs into one underscore"""
    return UNSAFE_NAME_PATTERN.sub("_", name).strip("_").strip(".")


def _same_dir(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a.absolute() == b.absolute()


class SkillInstaller:
    """Write skills into a skills folder and record the result."""

    def __init__(self, registry: SkillRegistry, manifests: ManifestStore):
        self.registry = registry
        self.manifests = manifests

    def install(
        self,
        artifact: VerifiedArtifact,
        target_base_dir: Optional[Path],
        provenance: Optional[Provenance] = None,
    ) -> InstallResult:
        """
        Install a verified skill below target_base_dir.

        Args:
            artifact: Output of ContentVerifier.verify()
            target_base_dir: Skills folder
            provenance: Registry reference to record (kept from the previous
                        record when omitted)

        Returns:
            InstallResult with the subfolder used

        Raises:
            NotConfigured: No target directory
            FilesystemError: Any write failed; no state was recorded
        """
        if target_base_dir is None or not str(target_base_dir).strip():
            raise NotConfigured("Skills folder not set. Run: dsoul config skills-folder <path>")

        base_dir = Path(target_base_dir).expanduser().resolve()
        try:
            base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(base_dir, f"Cannot create skills folder ({e.strerror or e})")

        existing = self.registry.get(artifact.cid)
        folder_name = self._previous_folder(existing, base_dir)
        reinstalled = folder_name is not None

        if folder_name is None:
            provenance_name = (provenance or (existing.provenance if existing else None))
            folder_name = self._new_folder_name(
                base_dir,
                artifact.metadata.name if artifact.metadata else None,
                provenance_name.name if provenance_name else None,
                artifact.cid,
            )

        folder = base_dir / folder_name
        if artifact.kind == SkillKind.BUNDLE:
            self._check_destinations(artifact.data, folder)
        if reinstalled:
            self._wipe(folder)
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(folder, f"Cannot create skill folder ({e.strerror or e})")

        result = InstallResult(
            cid=artifact.cid,
            base_dir=base_dir,
            subfolder_name=folder_name,
            reinstalled=reinstalled,
        )
        try:
            if artifact.kind == SkillKind.BUNDLE:
                self._extract_bundle(artifact.data, folder, overwrite=reinstalled, result=result)
            else:
                target = folder / SKILL_FILENAME
                try:
                    target.write_bytes(artifact.data)
                except OSError as e:
                    raise FilesystemError(target, f"Cannot write skill file ({e.strerror or e})")
                result.written.append(SKILL_FILENAME)
        except FilesystemError:
            self._discard(folder)
            raise

        self._record(artifact, existing, result, provenance)
        logger.info(
            f"Installed {artifact.cid} into {result.path}"
            + (" (reinstalled in place)" if reinstalled else "")
        )
        return result

    def deactivate(self, record: SkillRecord) -> SkillRecord:
        """
        Remove a skill's files and manifest entry; always marks it inactive.

        Raises:
            FilesystemError: Some files could not be removed (the record is
                             already saved as inactive at that point)
        """
        failures: List[FilesystemError] = []
        installed = record.installed_path

        if installed is not None:
            base_dir = installed.base()
            try:
                self.manifests.remove(base_dir, record.cid)
            except FilesystemError as e:
                failures.append(e)

            folder = installed.folder()
            if folder is not None:
                try:
                    shutil.rmtree(folder)
                    logger.info(f"Removed skill folder {folder}")
                except FileNotFoundError:
                    logger.debug(f"Skill folder already gone: {folder}")
                except OSError as e:
                    failures.append(FilesystemError(folder, f"Cannot remove skill folder ({e.strerror or e})"))
            else:
                failures.extend(self._remove_flat_files(record, base_dir))

        record.active = False
        self.registry.put(record)

        if failures:
            for failure in failures[1:]:
                logger.warning(f"Deactivate {record.cid}: {failure}")
            raise failures[0]
        return record

    def _previous_folder(self, existing: Optional[SkillRecord], base_dir: Path) -> Optional[str]:
        """Subfolder of an active install of the same CID into the same base dir

        An inactive record's folder was removed on deactivation and its name
        may since belong to another skill.
        """
        if existing is None or not existing.active or existing.installed_path is None:
            return None
        installed = existing.installed_path
        if not installed.subfolder_name:
            return None
        if not _same_dir(installed.base(), base_dir):
            return None
        return installed.subfolder_name

    def _new_folder_name(
        self,
        base_dir: Path,
        metadata_name: Optional[str],
        provenance_name: Optional[str],
        cid: str,
    ) -> str:
        candidate = ""
        for raw in (metadata_name, provenance_name, cid):
            if raw:
                candidate = sanitize_folder_name(raw)
                if candidate:
                    break
        if not candidate:
            candidate = cid

        name = candidate
        suffix = 0
        while (base_dir / name).exists():
            suffix += 1
            name = f"{candidate}_{suffix}"
        return name

    @staticmethod
    def _wipe(folder: Path) -> None:
        try:
            shutil.rmtree(folder)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise FilesystemError(folder, f"Cannot clear previous install ({e.strerror or e})")

    @staticmethod
    def _discard(folder: Path) -> None:
        """Remove a half-written skill folder"""
        try:
            shutil.rmtree(folder)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"Could not remove partial install {folder}: {e}")
            return
        logger.info(f"Removed partial install {folder}")

    @staticmethod
    def _check_destinations(data: bytes, folder: Path) -> None:
        """Reject the bundle before anything is written if any entry escapes folder"""
        for entry in iter_entries(data):
            destination_for(entry, folder)

    @staticmethod
    def _extract_bundle(data: bytes, folder: Path, overwrite: bool, result: InstallResult) -> None:
        for entry in iter_entries(data):
            outcome = extract_entry(entry, folder, overwrite=overwrite)
            if outcome == ExtractResult.WRITTEN:
                result.written.append(entry.name)
            elif outcome == ExtractResult.SKIPPED_EXISTS:
                result.skipped.append(entry.name)

    def _remove_flat_files(self, record: SkillRecord, base_dir: Path) -> List[FilesystemError]:
        """Legacy installs wrote straight into the base dir, without a subfolder"""
        failures: List[FilesystemError] = []
        targets: List[Path] = []

        if record.kind == SkillKind.BUNDLE:
            archive = self.registry.load_archive(record.cid)
            if archive is None:
                logger.warning(f"No stored archive for legacy bundle {record.cid}; cannot list its files")
                return failures
            for entry in iter_entries(archive):
                if entry.is_dir:
                    continue
                try:
                    targets.append(destination_for(entry, base_dir))
                except FilesystemError as e:
                    failures.append(e)
        else:
            targets.append(base_dir / SKILL_FILENAME)

        for target in targets:
            try:
                target.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                failures.append(FilesystemError(target, f"Cannot remove file ({e.strerror or e})"))
        return failures

    def _record(
        self,
        artifact: VerifiedArtifact,
        existing: Optional[SkillRecord],
        result: InstallResult,
        provenance: Optional[Provenance],
    ) -> None:
        if artifact.kind == SkillKind.BUNDLE:
            self.registry.save_archive(artifact.cid, artifact.data)
        else:
            self.registry.save_document(artifact.cid, artifact.data)

        record = existing or SkillRecord(cid=artifact.cid)
        record.kind = artifact.kind
        record.active = True
        record.installed_path = InstalledPath(
            base_dir=str(result.base_dir),
            subfolder_name=result.subfolder_name,
        )
        record.metadata = artifact.metadata or record.metadata
        if provenance is not None:
            record.provenance = provenance
        self.registry.put(record)
        self.manifests.upsert(result.base_dir, ManifestEntry.from_provenance(artifact.cid, record.provenance))


__all__ = ["SkillInstaller", "sanitize_folder_name"]
