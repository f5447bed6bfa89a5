"""Exceptions raised by the skill install/lifecycle engine.

Lower layers raise these; the CLI turns any DsoulError into a one-line
message on stderr and exit code 1.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple, Union


class DsoulError(Exception):
    """Base class for every error dsoul reports to the user."""
    pass


# Network

class NetworkError(DsoulError):
    """Gateway or registry unreachable."""
    pass


class GatewayNetworkError(NetworkError):
    """Transport failure talking to one gateway."""

    def __init__(self, gateway: str, reason: str):
        self.gateway = gateway
        self.reason = reason
        super().__init__(f"{gateway}: {reason}")


class GatewayHTTPError(NetworkError):
    """Gateway answered with a non-2xx status."""

    def __init__(self, gateway: str, status_code: int):
        self.gateway = gateway
        self.status_code = status_code
        super().__init__(f"{gateway}: HTTP {status_code}")


class AllGatewaysFailed(NetworkError):
    """No gateway (or not enough gateways) produced a payload."""

    def __init__(self, cid: str, failures: List[Tuple[str, str]], needed: int = 1, got: int = 0):
        self.cid = cid
        self.failures = failures
        self.needed = needed
        self.got = got
        detail = "; ".join(f"{gw}: {reason}" for gw, reason in failures) or "no gateways configured"
        if needed > 1:
            msg = f"Only {got} of {needed} required gateways returned {cid} ({detail})"
        else:
            msg = f"Failed to download {cid} from all gateways ({detail})"
        super().__init__(msg)


class RegistryError(NetworkError):
    """The dsoul provider API failed or returned something unusable."""
    pass


# Integrity

class IntegrityError(DsoulError):
    """Downloaded bytes do not hash to the requested CID."""

    def __init__(self, expected: str, computed: str, message: Optional[str] = None):
        self.expected = expected
        self.computed = computed
        super().__init__(
            message or f"Calculated hash does not match CID (expected: {expected}, got: {computed})"
        )


class GatewayMismatchError(IntegrityError):
    """Two gateways returned different bytes for the same CID."""

    def __init__(self, cid: str, first_gateway: str, other_gateway: str, first_size: int, other_size: int):
        self.first_gateway = first_gateway
        self.other_gateway = other_gateway
        super().__init__(
            expected=cid,
            computed=cid,
            message=(
                f"Files from different gateways do not match for {cid}: "
                f"{first_gateway} ({first_size} bytes) vs {other_gateway} ({other_size} bytes)"
            ),
        )


class SizeExceeded(DsoulError):
    """Payload is larger than the configured ceiling."""

    def __init__(self, gateway: str, size: int, limit: int):
        self.gateway = gateway
        self.size = size
        self.limit = limit
        super().__init__(
            f"File too large from {gateway}: {size / 1024 / 1024:.2f}MB "
            f"(max {limit / 1024 / 1024:.2f}MB)"
        )


# Classification

class ClassificationError(DsoulError):
    """Payload is not a skill."""
    pass


class NotASkillError(ClassificationError):
    """Archive without a primary skill document (or not a readable archive)."""
    pass


class BinaryContentError(ClassificationError):
    """Single-file payload that looks binary rather than text."""
    pass


# Local state

class FilesystemError(DsoulError):
    """Filesystem operation failed; carries the offending path."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{reason}: {path}")


class BlockedArtifact(DsoulError):
    """CID is on the provider blocklist."""

    def __init__(self, cid: str):
        self.cid = cid
        super().__init__(f"Cannot install {cid}: CID is on the blocklist")


class HashComputationError(DsoulError):
    """The external hasher ran but did not produce a CID."""
    pass


class NotConfigured(DsoulError):
    """A required setting (e.g. the skills folder) is missing."""
    pass


class SkillNotFound(DsoulError):
    """Unknown shortname, CID not installed, or unparsable input."""
    pass


__all__ = [
    "DsoulError",
    "NetworkError",
    "GatewayNetworkError",
    "GatewayHTTPError",
    "AllGatewaysFailed",
    "RegistryError",
    "IntegrityError",
    "GatewayMismatchError",
    "SizeExceeded",
    "ClassificationError",
    "NotASkillError",
    "BinaryContentError",
    "FilesystemError",
    "BlockedArtifact",
    "HashComputationError",
    "NotConfigured",
    "SkillNotFound",
]
