"""Skill header parsing.

This module provides:
- parse_skill_header() for YAML front-matter headers
- infer_metadata_from_markdown() when there is no front-matter
- is_likely_binary() to keep images and other binaries out of single-file skills

A header only ever informs display and folder naming. Identity is the CID.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import yaml

from dsoul.skills.models import SkillMetadata

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)

# "# Name", "# Persona: Name", "# Skill: Name (Edition)" ...
HEADING_PATTERN = re.compile(
    r"^#+[ \t]*(?:(?:Persona|Skill|Agent|Assistant)[ \t]*:[ \t]*)?(.+?)[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)
TRAILING_PARENTHETICAL = re.compile(r"\s*\([^)]+\)\s*$")
NEXT_SECTION_PATTERN = re.compile(r"^#{1,2}\s+", re.MULTILINE)
VERSION_PATTERN = re.compile(r"version[:\s]+([\d.]+)", re.IGNORECASE)

MIN_DESCRIPTION_LENGTH = 20
MAX_DESCRIPTION_LENGTH = 200
SECTION_SCAN_LIMIT = 500

BINARY_SAMPLE_BYTES = 8192
MAX_REPLACEMENT_RATIO = 0.05


def is_likely_binary(data: bytes) -> bool:
    """True if data looks like binary (e.g. an image) rather than text"""
    if not data:
        return False
    if b"\x00" in data[:BINARY_SAMPLE_BYTES]:
        return True
    decoded = data.decode("utf-8", errors="replace")
    replacements = decoded.count("�")
    return replacements > len(decoded) * MAX_REPLACEMENT_RATIO


def parse_skill_header(content: str) -> Optional[SkillMetadata]:
    """Parse the front-matter block, or infer metadata from markdown.

    A front-matter block without a name means "not a skill header" and
    returns None rather than falling back to inference.
    """
    if not isinstance(content, str):
        return None

    match = FRONTMATTER_PATTERN.match(content)
    if match:
        try:
            data = yaml.safe_load(match.group(1))
        except yaml.YAMLError as e:
            logger.debug(f"Front-matter is not valid YAML, inferring from markdown: {e}")
            return infer_metadata_from_markdown(content[match.end():])

        if not isinstance(data, dict) or not data.get("name"):
            return None
        return SkillMetadata(**{str(k): v for k, v in data.items()})

    return infer_metadata_from_markdown(content)


def _clean_heading(raw: str) -> str:
    return TRAILING_PARENTHETICAL.sub("", raw.strip()).strip()


def infer_metadata_from_markdown(content: str) -> Optional[SkillMetadata]:
    """Name from the first heading, description from the first real paragraph"""
    heading = HEADING_PATTERN.search(content)
    if not heading:
        return None

    name = _clean_heading(heading.group(1))
    if not name:
        return None

    description = None
    after_heading = content[heading.end():].lstrip("\n")
    next_section = NEXT_SECTION_PATTERN.search(after_heading)
    if next_section:
        section = after_heading[:next_section.start()]
    else:
        section = after_heading[:SECTION_SCAN_LIMIT]

    for paragraph in section.split("\n\n"):
        text = paragraph.strip()
        if len(text) <= MIN_DESCRIPTION_LENGTH or text.startswith(("#", "*", "-")):
            continue
        text = text.replace("**", "").replace("*", "").replace("`", "")
        if len(text) > MAX_DESCRIPTION_LENGTH:
            text = text[:MAX_DESCRIPTION_LENGTH - 3] + "..."
        description = text
        break

    version = None
    version_match = VERSION_PATTERN.search(content)
    if version_match:
        version = version_match.group(1).rstrip(".") or None

    return SkillMetadata(name=name, description=description, version=version)


__all__ = [
    "is_likely_binary",
    "parse_skill_header",
    "infer_metadata_from_markdown",
]
