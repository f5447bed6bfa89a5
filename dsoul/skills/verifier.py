"""
Content Verifier: turn a CID into bytes that provably belong to it.

Steps:
1. Download from gateways (sequential with early exit, or all concurrently)
2. Byte-compare every successful payload (skipped with a single source)
3. Classify single-file vs. bundle; bundles need skill.md, singles must be text
4. Recompute the CID and compare
5. Parse header metadata

Nothing is persisted here. A cancelled verify leaves no trace.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import httpx

from dsoul.config.settings import DEFAULT_MAX_PAYLOAD_BYTES
from dsoul.logging_utils import format_fields
from dsoul.skills import gateway as gateway_fetcher
from dsoul.skills.bundle import (
    find_license_entry,
    looks_like_zip,
    read_primary_document,
)
from dsoul.skills.errors import (
    AllGatewaysFailed,
    BinaryContentError,
    GatewayMismatchError,
    IntegrityError,
    NetworkError,
    NotASkillError,
    SizeExceeded,
)
from dsoul.skills.hashing import HashPrimitive
from dsoul.skills.metadata import is_likely_binary, parse_skill_header
from dsoul.skills.models import SKILL_FILENAME, SkillKind, SkillMetadata, VerifiedArtifact

logger = logging.getLogger(__name__)


@dataclass
class GatewayPayload:
    gateway: str
    data: bytes


@dataclass
class Classification:
    kind: SkillKind
    metadata: Optional[SkillMetadata]


class ContentVerifier:
    """Fetch, reconcile, classify and hash-check a skill"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        hasher: HashPrimitive,
        max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        min_sources: int = 1,
    ):
        """
        Args:
            client: Async HTTP client used for every gateway request
            hasher: CID computation
            max_bytes: Per-gateway payload ceiling
            min_sources: Successful downloads required before trusting the bytes.
                         With 1, a single responding gateway is trusted as is.
        """
        self.client = client
        self.hasher = hasher
        self.max_bytes = max_bytes
        self.min_sources = max(1, int(min_sources))

    async def verify(
        self,
        cid: str,
        gateways: Sequence[str],
        concurrent: bool = False,
        declared_bundle: Optional[bool] = None,
    ) -> VerifiedArtifact:
        """
        Verify a CID against the given gateways

        Args:
            cid: Expected content identifier
            gateways: Gateway base URLs
            concurrent: Query all gateways at once instead of stopping early
            declared_bundle: Registry says this CID is a skill bundle

        Returns:
            VerifiedArtifact whose bytes hash to cid

        Raises:
            AllGatewaysFailed: Not enough gateways returned the payload
            SizeExceeded: A gateway reported or sent too many bytes
            GatewayMismatchError: Gateways disagree on the bytes
            NotASkillError: Bundle without skill.md, or unreadable archive
            BinaryContentError: Single-file payload is not text
            IntegrityError: Recomputed CID differs from cid
        """
        if concurrent:
            payloads = await self._download_concurrent(cid, gateways)
        else:
            payloads = await self._download_sequential(cid, gateways)

        self._check_consensus(cid, payloads)

        data = payloads[0].data
        classification = self._classify(data, declared_bundle)

        computed = await self.hasher.compute(data)
        if computed != cid:
            logger.warning(format_fields(action="hash_mismatch", expected=cid, computed=computed))
            raise IntegrityError(expected=cid, computed=computed)

        logger.info(
            format_fields(
                action="verified",
                cid=cid,
                kind=classification.kind.value,
                sources=len(payloads),
                bytes=len(data),
            )
        )
        return VerifiedArtifact(
            cid=cid,
            kind=classification.kind,
            data=data,
            metadata=classification.metadata,
            sources=[p.gateway for p in payloads],
        )

    async def _download_sequential(self, cid: str, gateways: Sequence[str]) -> List[GatewayPayload]:
        payloads: List[GatewayPayload] = []
        failures: List[Tuple[str, str]] = []

        for base in gateways:
            name = gateway_fetcher.gateway_name(base)
            try:
                data = await gateway_fetcher.fetch(self.client, base, cid, self.max_bytes)
            except NetworkError as e:
                logger.debug(format_fields(action="gateway_failed", gateway=name, error=str(e)))
                failures.append((name, str(e)))
                continue

            payloads.append(GatewayPayload(name, data))
            if len(payloads) >= self.min_sources:
                return payloads

        raise AllGatewaysFailed(cid, failures, needed=self.min_sources, got=len(payloads))

    async def _download_concurrent(self, cid: str, gateways: Sequence[str]) -> List[GatewayPayload]:
        async def attempt(base: str) -> Union[GatewayPayload, Exception]:
            name = gateway_fetcher.gateway_name(base)
            try:
                return GatewayPayload(name, await gateway_fetcher.fetch(self.client, base, cid, self.max_bytes))
            except (NetworkError, SizeExceeded) as e:
                return e

        results = await asyncio.gather(*(attempt(base) for base in gateways))

        payloads: List[GatewayPayload] = []
        failures: List[Tuple[str, str]] = []
        for base, result in zip(gateways, results):
            if isinstance(result, SizeExceeded):
                raise result
            if isinstance(result, Exception):
                failures.append((gateway_fetcher.gateway_name(base), str(result)))
            else:
                payloads.append(result)

        if len(payloads) < self.min_sources:
            raise AllGatewaysFailed(cid, failures, needed=self.min_sources, got=len(payloads))
        return payloads

    @staticmethod
    def _check_consensus(cid: str, payloads: List[GatewayPayload]) -> None:
        """Every payload must equal the first, byte for byte"""
        if len(payloads) < 2:
            return
        first = payloads[0]
        for other in payloads[1:]:
            if other.data != first.data:
                raise GatewayMismatchError(
                    cid, first.gateway, other.gateway, len(first.data), len(other.data)
                )
        logger.debug(f"Files from {len(payloads)} gateway(s) match for {cid}")

    @staticmethod
    def _classify(data: bytes, declared_bundle: Optional[bool]) -> Classification:
        is_bundle = bool(declared_bundle) or looks_like_zip(data)

        if is_bundle:
            primary = read_primary_document(data)
            if primary is None:
                raise NotASkillError(f"Zip file does not contain {SKILL_FILENAME} (not a skill bundle)")
            if find_license_entry(data) is None:
                logger.warning("Skill bundle has no license document")
            return Classification(SkillKind.BUNDLE, parse_skill_header(primary))

        if is_likely_binary(data):
            raise BinaryContentError(
                "Binary file (e.g. image) - not a text skill. "
                f"Use a markdown skill file or a zip bundle with {SKILL_FILENAME}."
            )
        return Classification(SkillKind.SINGLE, parse_skill_header(data.decode("utf-8", errors="replace")))


__all__ = ["ContentVerifier", "GatewayPayload", "Classification"]
