"""
Diamond Soul provider API client.

Endpoints (relative to <provider>/wp-json/diamond-soul/v1):
- GET search_by_cid?cid=          registry entries for a CID (may be empty)
- GET resolve_shortname?shortname= {"cid": ...}, 404/400 when unknown
- GET file/{id|link}/graph         version graph (see versions.py)
- GET blocklist                    ["cid", ...] or {"cids": [...]}

Only metadata travels over this client; skill bytes always come from IPFS
gateways and are verified against their CID.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple, Union
from urllib.parse import quote, urlparse

import httpx

from dsoul.config.settings import DEFAULT_PROVIDER
from dsoul.skills.errors import RegistryError, SkillNotFound
from dsoul.skills.models import Provenance

logger = logging.getLogger(__name__)

DSOUL_API_PATH = "/wp-json/diamond-soul/v1"

IPFS_SCHEME = "ipfs://"

# CIDv0 (Qm + 44 base58), CIDv1 base32 (b...), base58btc (z...)
CID_PATTERN = re.compile(r"^(Qm[1-9A-HJ-NP-Za-km-z]{44}|b[a-z0-9]{58,}|z[a-z0-9]+)$", re.IGNORECASE)


def is_cid(value: str) -> bool:
    return bool(CID_PATTERN.match(value or ""))


def parse_cid_input(value: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Split user input into (cid, shortname)

    "ipfs://<cid>/path" and bare CIDs give a cid; anything else that could be
    a shortname (no whitespace, no slashes) gives a shortname.

    Raises:
        SkillNotFound: Input is neither
    """
    text = (value or "").strip()
    if text.lower().startswith(IPFS_SCHEME):
        cid = text[len(IPFS_SCHEME):].split("/")[0].strip()
        if not is_cid(cid):
            raise SkillNotFound(f"No valid CID in {value!r}")
        return cid, None
    if is_cid(text):
        return text, None
    if text and not re.search(r"[\s/\\]", text):
        return None, text
    raise SkillNotFound(f"Invalid input {value!r}: expected ipfs://<cid>, a CID or a shortname")


def api_base(provider: Optional[str]) -> str:
    origin = (provider or DEFAULT_PROVIDER).strip().rstrip("/")
    if origin.endswith(DSOUL_API_PATH):
        return origin
    return origin + DSOUL_API_PATH


def entry_date(entry: Dict[str, Any]) -> str:
    value = entry.get("date") or entry.get("post_date") or ""
    return str(value)


def oldest_entry(entries: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Default disambiguation: the earliest-dated entry (undated entries last)"""
    if not entries:
        return None
    return min(entries, key=lambda e: (entry_date(e) == "", entry_date(e)))


def provenance_from_entry(entry: Dict[str, Any], shortname: Optional[str] = None) -> Provenance:
    """Build a Provenance from a search_by_cid entry"""
    link = entry.get("wordpress_url") or entry.get("link") or entry.get("url")
    hostname = None
    if isinstance(link, str) and link:
        hostname = urlparse(link).hostname

    bundle_flag = entry.get("is_skill_bundle", entry.get("is_bundle"))
    return Provenance(
        upstream_id=entry.get("id", entry.get("post_id", entry.get("ID"))),
        upstream_link=link if isinstance(link, str) and link else None,
        shortname=shortname or entry.get("shortname"),
        hostname=hostname,
        name=entry.get("name") or entry.get("title"),
        author=entry.get("author_name") or entry.get("author"),
        is_bundle=bool(bundle_flag) if bundle_flag is not None else None,
    )


class DsoulProviderClient:
    """Async client for the provider's metadata API"""

    def __init__(self, client: httpx.AsyncClient, provider: Optional[str] = None):
        self.client = client
        self.base_url = api_base(provider)

    @property
    def hostname(self) -> Optional[str]:
        return urlparse(self.base_url).hostname

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            return await self.client.get(url, params=params)
        except httpx.TimeoutException:
            raise RegistryError(f"Provider request timed out: {url}")
        except httpx.HTTPError as e:
            raise RegistryError(f"Provider unreachable ({url}): {e}")

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            raise RegistryError(f"Provider returned invalid JSON from {response.request.url}")

    async def search_by_cid(self, cid: str) -> List[Dict[str, Any]]:
        """
        Registry entries for a CID

        Returns:
            Entries (possibly empty - a CID can exist without registry metadata)

        Raises:
            RegistryError: Transport failure or server error
        """
        response = await self._get("search_by_cid", params={"cid": cid})
        if response.status_code == 404:
            return []
        if not response.is_success:
            raise RegistryError(f"search_by_cid failed: HTTP {response.status_code}")

        data = self._json(response)
        if isinstance(data, dict):
            data = data.get("entries", [])
        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    async def resolve_shortname(self, shortname: str) -> str:
        """
        Resolve a shortname (user@name) to its current CID

        Raises:
            SkillNotFound: Unknown or invalid shortname (404/400)
            RegistryError: Transport failure or server error
        """
        response = await self._get("resolve_shortname", params={"shortname": shortname})
        if response.status_code in (400, 404):
            raise SkillNotFound(f"No skill found for shortname '{shortname}'")
        if not response.is_success:
            raise RegistryError(f"resolve_shortname failed: HTTP {response.status_code}")

        data = self._json(response)
        cid = data.get("cid") if isinstance(data, dict) else None
        if not isinstance(cid, str) or not cid.strip():
            raise SkillNotFound(f"No skill found for shortname '{shortname}'")
        return cid.strip()

    async def fetch_version_graph(self, reference: Union[int, str]) -> Any:
        """
        Raw version graph for an upstream id or link

        Raises:
            RegistryError: Transport failure or non-2xx response
        """
        ref = quote(str(reference), safe="")
        response = await self._get(f"file/{ref}/graph")
        if not response.is_success:
            raise RegistryError(f"Version graph request failed: HTTP {response.status_code}")
        return self._json(response)

    async def fetch_blocklist(self) -> Set[str]:
        """
        Current blocklist

        Raises:
            RegistryError: Transport failure, non-2xx or unrecognised shape
        """
        response = await self._get("blocklist")
        if not response.is_success:
            raise RegistryError(f"Blocklist request failed: HTTP {response.status_code}")

        data = self._json(response)
        if isinstance(data, dict):
            data = data.get("cids")
        if not isinstance(data, list):
            raise RegistryError("Blocklist response has no CID list")
        return {c.strip() for c in data if isinstance(c, str) and c.strip()}


__all__ = [
    "CID_PATTERN",
    "DSOUL_API_PATH",
    "DsoulProviderClient",
    "api_base",
    "entry_date",
    "is_cid",
    "oldest_entry",
    "parse_cid_input",
    "provenance_from_entry",
]
