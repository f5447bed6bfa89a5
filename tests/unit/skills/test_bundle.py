from __future__ import annotations

from pathlib import Path

import pytest

from dsoul.skills.bundle import (
    ExtractResult,
    extract_entry,
    find_license_entry,
    find_primary_entry,
    iter_entries,
    looks_like_zip,
    read_primary_document,
)
from dsoul.skills.errors import FilesystemError, NotASkillError


def test_zip_signature(make_zip) -> None:
    assert looks_like_zip(make_zip({"skill.md": b"# X\n"}))
    assert not looks_like_zip(b"# Not a zip")


def test_primary_document_is_case_insensitive_and_shallowest(make_zip) -> None:
    data = make_zip({
        "docs/nested/skill.md": b"# Nested\n",
        "SKILL.MD": b"# Top\n",
        "LICENSE": b"MIT",
    })

    assert find_primary_entry(data) == "SKILL.MD"
    assert read_primary_document(data) == "# Top\n"
    assert find_license_entry(data) == "LICENSE"


def test_bundle_without_primary_document(make_zip) -> None:
    data = make_zip({"readme.md": b"# Readme\n"})
    assert find_primary_entry(data) is None
    assert read_primary_document(data) is None


def test_unreadable_archive_is_not_a_skill() -> None:
    with pytest.raises(NotASkillError):
        list(iter_entries(b"PK\x03\x04 truncated"))


def test_primary_entry_lands_under_canonical_name(tmp_path: Path, make_zip) -> None:
    data = make_zip({"Skill.MD": b"# Canon\n", "assets/a.txt": b"a"})

    results = [extract_entry(entry, tmp_path) for entry in iter_entries(data)]

    assert results == [ExtractResult.WRITTEN, ExtractResult.WRITTEN]
    assert (tmp_path / "skill.md").read_bytes() == b"# Canon\n"
    assert (tmp_path / "assets" / "a.txt").read_bytes() == b"a"


def test_existing_files_are_never_overwritten(tmp_path: Path, make_zip) -> None:
    (tmp_path / "notes.txt").write_text("mine", encoding="utf-8")
    data = make_zip({"SKILL.md": b"first", "skill.md": b"second", "notes.txt": b"theirs"})

    results = [extract_entry(entry, tmp_path) for entry in iter_entries(data)]

    assert results == [ExtractResult.WRITTEN, ExtractResult.SKIPPED_EXISTS, ExtractResult.SKIPPED_EXISTS]
    assert (tmp_path / "skill.md").read_bytes() == b"first"
    assert (tmp_path / "notes.txt").read_text(encoding="utf-8") == "mine"


def test_overwrite_after_wipe(tmp_path: Path, make_zip) -> None:
    (tmp_path / "skill.md").write_text("old", encoding="utf-8")
    data = make_zip({"skill.md": b"new"})

    for entry in iter_entries(data):
        assert extract_entry(entry, tmp_path, overwrite=True) == ExtractResult.WRITTEN
    assert (tmp_path / "skill.md").read_bytes() == b"new"


@pytest.mark.parametrize("name", ["../escape.txt", "a/../../escape.txt", "/etc/escape.txt"])
def test_entries_escaping_the_folder_are_rejected(tmp_path: Path, make_zip, name: str) -> None:
    dest = tmp_path / "skill"
    dest.mkdir()
    data = make_zip({"skill.md": b"# X\n", name: b"evil"})

    with pytest.raises(FilesystemError):
        for entry in iter_entries(data):
            extract_entry(entry, dest)

    assert not (tmp_path / "escape.txt").exists()
