"""Settings: persisted configuration for the dsoul CLI"""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, List, Optional

from dsoul.core.storage.paths import settings_path

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "https://dsoul.org"

DEFAULT_IPFS_GATEWAYS = [
    "https://ipfs.io/ipfs/",
    "https://gateway.pinata.cloud/ipfs/",
    "https://dweb.link/ipfs/",
    "https://gateway.ipfs.io/ipfs/",
]

# 2MB - skills are text files or small zip bundles
DEFAULT_MAX_PAYLOAD_BYTES = 2 * 1024 * 1024

DEFAULT_BLOCKLIST_TTL_SECONDS = 6 * 60 * 60


@dataclass
class DsoulSettings:
    """Settings: everything the install/lifecycle flows need, passed explicitly"""

    skills_folder: str = ""  # global install target used with -g
    dsoul_provider: str = DEFAULT_PROVIDER
    ipfs_gateways: List[str] = field(default_factory=lambda: list(DEFAULT_IPFS_GATEWAYS))
    local_skills_dir: str = "skills"  # relative to the working directory
    hash_command: List[str] = field(default_factory=lambda: ["ipfs", "add", "--only-hash", "-Q"])
    request_timeout: float = 30.0
    max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
    blocklist_ttl_seconds: int = DEFAULT_BLOCKLIST_TTL_SECONDS
    min_gateway_sources: int = 1

    def gateways(self) -> List[str]:
        """Configured gateways with a trailing slash, defaults when none are set"""
        urls = [u.strip() for u in self.ipfs_gateways if u and u.strip()]
        if not urls:
            urls = list(DEFAULT_IPFS_GATEWAYS)
        return [u if u.endswith("/") else u + "/" for u in urls]

    def global_skills_dir(self) -> Optional[Path]:
        if not self.skills_folder.strip():
            return None
        return Path(self.skills_folder).expanduser()

    def local_skills_path(self, cwd: Optional[Path] = None) -> Path:
        return (cwd or Path.cwd()) / self.local_skills_dir

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "DsoulSettings":
        """Create from dictionary, ignoring unknown keys"""
        defaults = cls()
        return cls(
            skills_folder=data.get("skills_folder", defaults.skills_folder) or "",
            dsoul_provider=data.get("dsoul_provider", defaults.dsoul_provider) or DEFAULT_PROVIDER,
            ipfs_gateways=list(data.get("ipfs_gateways") or defaults.ipfs_gateways),
            local_skills_dir=data.get("local_skills_dir", defaults.local_skills_dir) or "skills",
            hash_command=list(data.get("hash_command") or defaults.hash_command),
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
            max_payload_bytes=int(data.get("max_payload_bytes", defaults.max_payload_bytes)),
            blocklist_ttl_seconds=int(data.get("blocklist_ttl_seconds", defaults.blocklist_ttl_seconds)),
            min_gateway_sources=int(data.get("min_gateway_sources", defaults.min_gateway_sources)),
        )


class SettingsManager:
    """Manage settings persistence"""

    def __init__(self, path: Optional[Path] = None):
        # Default: ~/.dsoul/settings.json
        self.settings_path = path or settings_path()

    def load(self) -> DsoulSettings:
        """Load settings from file"""
        if not self.settings_path.exists():
            return DsoulSettings()

        try:
            with open(self.settings_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("settings file must contain a JSON object")
            return DsoulSettings.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load settings from {self.settings_path}: {e}")
            return DsoulSettings()

    def save(self, settings: DsoulSettings) -> None:
        """Save settings to file"""
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.settings_path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)

    def update_provider(self, provider: str) -> DsoulSettings:
        settings = self.load()
        settings.dsoul_provider = provider.strip().rstrip("/")
        self.save(settings)
        return settings

    def update_skills_folder(self, folder: str) -> DsoulSettings:
        settings = self.load()
        settings.skills_folder = str(Path(folder).expanduser().resolve())
        self.save(settings)
        return settings

    def update_gateways(self, gateways: List[str]) -> DsoulSettings:
        """Replace the gateway list

        Raises:
            ValueError: If the list is empty
        """
        cleaned = [g.strip() for g in gateways if g.strip()]
        if not cleaned:
            raise ValueError("At least one IPFS gateway is required")
        settings = self.load()
        settings.ipfs_gateways = cleaned
        self.save(settings)
        return settings


def load_settings(path: Optional[Path] = None) -> DsoulSettings:
    """Load settings (convenience function)"""
    return SettingsManager(path).load()


def save_settings(settings: DsoulSettings, path: Optional[Path] = None) -> None:
    """Save settings (convenience function)"""
    SettingsManager(path).save(settings)
