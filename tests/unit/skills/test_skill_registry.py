from __future__ import annotations

import json
from pathlib import Path

import pytest

from dsoul.skills.models import InstalledPath, Provenance, SkillKind, SkillRecord
from dsoul.skills.registry import SkillRegistry


def test_put_get_round_trip_uses_camel_case(tmp_path: Path) -> None:
    registry = SkillRegistry(tmp_path)
    record = SkillRecord(
        cid="bafkA",
        kind=SkillKind.BUNDLE,
        active=True,
        installed_path=InstalledPath(base_dir="/skills", subfolder_name="A"),
        provenance=Provenance(upstream_id=3, shortname="amy@a"),
        tags=["b", "a", "a"],
    )

    registry.put(record)

    raw = json.loads((tmp_path / "bafkA.json").read_text(encoding="utf-8"))
    assert raw["installedPath"] == {"baseDir": "/skills", "subfolderName": "A"}
    assert raw["provenance"]["upstreamId"] == 3
    assert raw["tags"] == ["a", "b"]

    loaded = registry.get("bafkA")
    assert loaded.kind == SkillKind.BUNDLE
    assert loaded.installed_path.folder() == Path("/skills/A")
    assert not list(tmp_path.glob("*.tmp"))


def test_list_all_skips_corrupt_records(tmp_path: Path) -> None:
    registry = SkillRegistry(tmp_path)
    registry.put(SkillRecord(cid="bafkA", created_at="2024-01-01T00:00:00+00:00"))
    registry.put(SkillRecord(cid="bafkB", created_at="2023-01-01T00:00:00+00:00"))
    (tmp_path / "bafkBROKEN.json").write_text("{", encoding="utf-8")

    assert [r.cid for r in registry.list_all()] == ["bafkB", "bafkA"]
    assert registry.get("bafkBROKEN") is None


def test_delete_removes_record_and_archive(tmp_path: Path) -> None:
    registry = SkillRegistry(tmp_path)
    registry.put(SkillRecord(cid="bafkZIP", kind=SkillKind.BUNDLE))
    registry.save_archive("bafkZIP", b"PK\x03\x04")

    assert registry.delete("bafkZIP") is True
    assert registry.get("bafkZIP") is None
    assert registry.load_archive("bafkZIP") is None
    assert registry.delete("bafkZIP") is False


def test_set_tags(tmp_path: Path) -> None:
    registry = SkillRegistry(tmp_path)
    registry.put(SkillRecord(cid="bafkA", tags=["old"]))

    record = registry.set_tags("bafkA", add=["new", " spaced "], remove=["old"])

    assert record.tags == ["new", "spaced"]
    assert registry.get("bafkA").tags == ["new", "spaced"]
    assert registry.set_tags("bafkMISSING", add=["x"]) is None


def test_unsafe_cid_never_becomes_a_path(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        SkillRegistry(tmp_path).get("../../etc/passwd")


def test_document_bytes_are_stored_verbatim(tmp_path: Path) -> None:
    registry = SkillRegistry(tmp_path)
    raw = "# Café\n".encode("latin-1")
    registry.put(SkillRecord(cid="bafkTXT"))
    registry.save_document("bafkTXT", raw)

    assert registry.load_document("bafkTXT") == raw
    assert registry.delete("bafkTXT") is True
    assert registry.load_document("bafkTXT") is None
