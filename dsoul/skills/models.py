"""
Skill Data Models

Persisted shapes (pydantic):
- SkillRecord: one per installed CID, stored by the Lifecycle Tracker as <cid>.json
- ManifestEntry: one per CID inside a skills folder's dsoul.json
- Provenance: registry reference used for upgrades, never for identity

In-memory results (dataclasses):
- VerifiedArtifact: bytes that passed verification, ready for the installer
- InstallResult: where the installer put them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Canonical filename of a skill's primary document inside its folder
SKILL_FILENAME = "skill.md"

# Per-directory manifest file
MANIFEST_FILENAME = "dsoul.json"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class SkillKind(str, Enum):
    """Skill payload kinds"""
    SINGLE = "single"  # one markdown document
    BUNDLE = "bundle"  # zip archive with skill.md (+ license)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SkillMetadata(BaseModel):
    """Parsed from the payload header; informational only."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name", "version", "description", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        return _coerce_optional_str(value)


class Provenance(_CamelModel):
    """Registry reference for a skill (author, shortname, upstream post)."""

    upstream_id: Optional[int] = None
    upstream_link: Optional[str] = None
    shortname: Optional[str] = None
    hostname: Optional[str] = None
    name: Optional[str] = None
    author: Optional[str] = None
    is_bundle: Optional[bool] = None

    @field_validator("upstream_id", mode="before")
    @classmethod
    def _int_id(cls, value: Any) -> Optional[int]:
        return _coerce_optional_int(value)

    def has_upstream(self) -> bool:
        return self.upstream_id is not None or bool(self.upstream_link)


class InstalledPath(_CamelModel):
    base_dir: str
    subfolder_name: Optional[str] = None  # None for legacy flat installs

    def base(self) -> Path:
        return Path(self.base_dir)

    def folder(self) -> Optional[Path]:
        if not self.subfolder_name:
            return None
        return Path(self.base_dir) / self.subfolder_name


class SkillRecord(_CamelModel):
    """Lifecycle record for one installed skill."""

    cid: str
    kind: SkillKind = SkillKind.SINGLE
    tags: List[str] = Field(default_factory=list)
    active: bool = False
    installed_path: Optional[InstalledPath] = None
    metadata: Optional[SkillMetadata] = None
    provenance: Optional[Provenance] = None
    created_at: str = Field(default_factory=utc_now_iso)

    @field_validator("tags", mode="before")
    @classmethod
    def _unique_tags(cls, value: Any) -> List[str]:
        if not value:
            return []
        cleaned = {str(t).strip() for t in value if str(t).strip()}
        return sorted(cleaned)

    def display_name(self) -> str:
        if self.metadata and self.metadata.name:
            return self.metadata.name
        if self.provenance and self.provenance.name:
            return self.provenance.name
        return self.cid

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ManifestEntry(BaseModel):
    """Entry of a skills folder's dsoul.json"""

    model_config = ConfigDict(populate_by_name=True)

    cid: str
    shortname: Optional[str] = None
    upstream_id: Optional[int] = Field(default=None, alias="num")
    upstream_link: Optional[str] = Field(default=None, alias="src")
    hostname: Optional[str] = None

    @field_validator("upstream_id", mode="before")
    @classmethod
    def _int_id(cls, value: Any) -> Optional[int]:
        return _coerce_optional_int(value)

    @classmethod
    def from_provenance(cls, cid: str, provenance: Optional[Provenance]) -> "ManifestEntry":
        if provenance is None:
            return cls(cid=cid)
        return cls(
            cid=cid,
            shortname=provenance.shortname,
            upstream_id=provenance.upstream_id,
            upstream_link=provenance.upstream_link,
            hostname=provenance.hostname,
        )

    def to_provenance(self) -> Provenance:
        return Provenance(
            upstream_id=self.upstream_id,
            upstream_link=self.upstream_link,
            shortname=self.shortname,
            hostname=self.hostname,
        )

    def to_json_dict(self) -> dict:
        # dsoul.json always carries every key, null when unknown
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class VerifiedArtifact:
    """Bytes whose hash equals cid; kind and metadata derived from them."""

    cid: str
    kind: SkillKind
    data: bytes
    metadata: Optional[SkillMetadata] = None
    sources: List[str] = field(default_factory=list)

    @property
    def is_bundle(self) -> bool:
        return self.kind == SkillKind.BUNDLE


@dataclass
class InstallResult:
    cid: str
    base_dir: Path
    subfolder_name: str
    reinstalled: bool = False
    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def path(self) -> Path:
        return self.base_dir / self.subfolder_name


__all__ = [
    "SKILL_FILENAME",
    "MANIFEST_FILENAME",
    "SkillKind",
    "SkillMetadata",
    "Provenance",
    "InstalledPath",
    "SkillRecord",
    "ManifestEntry",
    "VerifiedArtifact",
    "InstallResult",
    "utc_now_iso",
]
