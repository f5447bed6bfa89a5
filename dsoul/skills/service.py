"""
Skill Service: install / uninstall / upgrade / update flows.

Wires the pieces together for one unit of work:

    input -> CID (ipfs://, bare CID, or shortname)
          -> blocklist check (before any gateway request)
          -> registry metadata (provenance, declared bundle flag)
          -> ContentVerifier.verify()
          -> SkillInstaller.install()

Each collaborator gets its parameters from DsoulSettings here; nothing below
this module reads settings itself.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
)

import httpx

from dsoul import __version__
from dsoul.config.settings import DsoulSettings
from dsoul.skills.blocklist import BlocklistManager, find_blocked, flatten
from dsoul.skills.errors import (
    BlockedArtifact,
    FilesystemError,
    IntegrityError,
    NotConfigured,
    RegistryError,
    SkillNotFound,
)
from dsoul.skills.hashing import HashPrimitive, IpfsCliHasher
from dsoul.skills.installer import SkillInstaller
from dsoul.skills.manifest import ManifestStore
from dsoul.skills.models import (
    InstallResult,
    ManifestEntry,
    Provenance,
    SkillKind,
    SkillRecord,
    VerifiedArtifact,
)
from dsoul.skills.provider import (
    DsoulProviderClient,
    oldest_entry,
    parse_cid_input,
    provenance_from_entry,
)
from dsoul.skills.registry import SkillRegistry
from dsoul.skills.verifier import ContentVerifier
from dsoul.skills.versions import UpgradeCheck, VersionResolver

logger = logging.getLogger(__name__)

EntryChooser = Callable[[List[Dict[str, Any]]], Optional[Dict[str, Any]]]
UpgradeConfirm = Callable[[Path, UpgradeCheck], bool]
RemovalConfirm = Callable[[Path, ManifestEntry], bool]


@dataclass
class UpdateReport:
    directory: Path
    entry: ManifestEntry
    check: UpgradeCheck


@dataclass
class UpgradeOutcome:
    directory: Path
    check: UpgradeCheck
    result: Optional[InstallResult] = None
    skipped: Optional[str] = None  # reason when an available upgrade was not applied


@dataclass
class SweepReport:
    blocked_count: int
    found: List[Tuple[Path, ManifestEntry]] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


def _same_dir(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a.absolute() == b.absolute()


class SkillService:
    """Orchestrates the install/lifecycle flows over one HTTP client"""

    def __init__(
        self,
        settings: DsoulSettings,
        client: httpx.AsyncClient,
        hasher: Optional[HashPrimitive] = None,
        registry: Optional[SkillRegistry] = None,
        manifests: Optional[ManifestStore] = None,
        chooser: Optional[EntryChooser] = None,
        blocklist_cache: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
        concurrent: bool = False,
    ):
        """
        Args:
            settings: Explicit configuration
            client: Shared async HTTP client (gateways and provider)
            hasher: CID computation; defaults to the ipfs CLI from settings
            registry: Lifecycle Tracker; defaults to ~/.dsoul/skills
            manifests: dsoul.json store
            chooser: Picks one registry entry when a CID has several;
                     defaults to the oldest
            blocklist_cache: Cache file; defaults to ~/.dsoul/blocklist.json
            clock: Time source for the blocklist TTL
            concurrent: Query all gateways at once instead of in order
        """
        self.settings = settings
        self.client = client
        self.hasher = hasher or IpfsCliHasher(settings.hash_command)
        self.registry = registry or SkillRegistry()
        self.manifests = manifests or ManifestStore()
        self.chooser: EntryChooser = chooser or oldest_entry
        self.concurrent = concurrent

        self.provider = DsoulProviderClient(client, settings.dsoul_provider)
        self.verifier = ContentVerifier(
            client,
            self.hasher,
            max_bytes=settings.max_payload_bytes,
            min_sources=settings.min_gateway_sources,
        )
        self.installer = SkillInstaller(self.registry, self.manifests)
        self.resolver = VersionResolver(self.provider)
        self.blocklist = BlocklistManager(
            self.provider,
            cache_path=blocklist_cache,
            ttl_seconds=settings.blocklist_ttl_seconds,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self, value: str, local_dirs: Sequence[Path] = ()
    ) -> Tuple[str, Optional[str]]:
        """
        Turn user input into (cid, shortname)

        Shortnames are looked up in the given folders' manifests first, then
        with the provider.

        Raises:
            SkillNotFound: Invalid input or unknown shortname
            RegistryError: Provider unreachable
        """
        cid, shortname = parse_cid_input(value)
        if cid is not None:
            return cid, None

        for directory in local_dirs:
            for entry in self.manifests.read(directory):
                if entry.shortname and entry.shortname == shortname:
                    logger.debug(f"Resolved {shortname} to {entry.cid} from {directory}")
                    return entry.cid, shortname

        cid = await self.provider.resolve_shortname(shortname)
        logger.info(f"Resolved {shortname} to {cid}")
        return cid, shortname

    async def lookup_provenance(self, cid: str, shortname: Optional[str] = None) -> Optional[Provenance]:
        """Registry metadata for cid; None when the registry has nothing (or is down)"""
        try:
            entries = await self.provider.search_by_cid(cid)
        except RegistryError as e:
            logger.warning(f"Registry lookup for {cid} failed; installing without provenance: {e}")
            entries = []

        entry = None
        if len(entries) == 1:
            entry = entries[0]
        elif entries:
            logger.info(f"{len(entries)} registry entries for {cid}")
            entry = self.chooser(entries)

        if entry is None:
            if shortname:
                return Provenance(shortname=shortname, hostname=self.provider.hostname)
            return None
        return provenance_from_entry(entry, shortname=shortname)

    # ------------------------------------------------------------------
    # Install / uninstall
    # ------------------------------------------------------------------

    async def install(self, value: str, target_base_dir: Optional[Path]) -> InstallResult:
        """
        Resolve, blocklist-check, verify and install a skill

        Raises:
            NotConfigured: No target folder
            BlockedArtifact: CID is blocklisted (no gateway was contacted)
            SkillNotFound, NetworkError, IntegrityError, SizeExceeded,
            ClassificationError, FilesystemError: from the steps above
        """
        if target_base_dir is None:
            raise NotConfigured("Skills folder not set. Run: dsoul config skills-folder <path>")

        cid, shortname = await self.resolve(value)
        return await self._install_cid(cid, Path(target_base_dir), shortname)

    async def _install_cid(self, cid: str, target_base_dir: Path, shortname: Optional[str]) -> InstallResult:
        if await self.blocklist.is_blocked(cid):
            raise BlockedArtifact(cid)

        provenance = await self.lookup_provenance(cid, shortname)
        artifact = await self.verifier.verify(
            cid,
            self.settings.gateways(),
            concurrent=self.concurrent,
            declared_bundle=provenance.is_bundle if provenance else None,
        )
        self._release_other_location(cid, target_base_dir)
        return self.installer.install(artifact, target_base_dir, provenance=provenance)

    def _release_other_location(self, cid: str, target_base_dir: Path) -> None:
        """A record tracks one location: deactivate an install elsewhere first"""
        record = self.registry.get(cid)
        if record is None or not record.active or record.installed_path is None:
            return
        if _same_dir(record.installed_path.base(), target_base_dir):
            return
        logger.info(f"Moving {cid} from {record.installed_path.base()} to {target_base_dir}")
        try:
            self.installer.deactivate(record)
        except FilesystemError as e:
            logger.warning(f"Could not fully remove previous install of {cid}: {e}")

    async def uninstall(self, value: str, search_dirs: Sequence[Path] = ()) -> str:
        """
        Remove a skill's files, manifest entries and record

        Returns:
            The CID removed

        Raises:
            SkillNotFound: Nothing installed under that CID/shortname
        """
        cid, _ = await self.resolve(value, local_dirs=search_dirs)
        if not self._remove(cid, search_dirs):
            raise SkillNotFound(f"Skill {cid} is not installed")
        return cid

    def _remove(self, cid: str, search_dirs: Iterable[Path]) -> bool:
        removed = False
        for directory in search_dirs:
            try:
                removed = self.manifests.remove(directory, cid) or removed
            except FilesystemError as e:
                logger.warning(f"Could not update manifest in {directory}: {e}")

        record = self.registry.get(cid)
        if record is not None:
            try:
                self.installer.deactivate(record)
            except FilesystemError as e:
                logger.warning(f"Uninstall {cid}: {e}")
            removed = self.registry.delete(cid) or removed

        if removed:
            logger.info(f"Uninstalled {cid}")
        return removed

    # ------------------------------------------------------------------
    # Upgrades
    # ------------------------------------------------------------------

    def _reference_for(self, entry: ManifestEntry) -> Provenance:
        record = self.registry.get(entry.cid)
        if record is not None and record.provenance is not None and record.provenance.has_upstream():
            return record.provenance
        return entry.to_provenance()

    async def check_updates(self, directories: Sequence[Path]) -> List[UpdateReport]:
        """Upgrade status of every manifest entry; changes nothing"""
        reports: List[UpdateReport] = []
        for directory in directories:
            for entry in self.manifests.read(directory):
                check = await self.resolver.resolve_upgrade(entry.cid, self._reference_for(entry))
                reports.append(UpdateReport(Path(directory), entry, check))
        return reports

    async def upgrade(
        self,
        directories: Sequence[Path],
        confirm: Optional[UpgradeConfirm] = None,
    ) -> List[UpgradeOutcome]:
        """
        Replace every skill that has a newer version with that version

        The old CID is uninstalled first, then the new one installed into the
        same folder. Blocked new versions are never installed.

        Args:
            directories: Skills folders to upgrade
            confirm: Asked before each upgrade; None upgrades without asking
        """
        outcomes: List[UpgradeOutcome] = []
        for report in await self.check_updates(directories):
            outcome = UpgradeOutcome(report.directory, report.check)
            outcomes.append(outcome)
            if not report.check.available:
                continue

            new_cid = report.check.latest_cid
            if await self.blocklist.is_blocked(new_cid):
                logger.warning(f"Not upgrading {report.entry.cid}: {new_cid} is blocked")
                outcome.skipped = "blocked"
                continue
            if confirm is not None and not confirm(report.directory, report.check):
                outcome.skipped = "declined"
                continue

            self._remove(report.entry.cid, [report.directory])
            outcome.result = await self._install_cid(new_cid, report.directory, report.entry.shortname)
            logger.info(f"Upgraded {report.entry.cid} -> {new_cid} in {report.directory}")
        return outcomes

    # ------------------------------------------------------------------
    # Blocklist maintenance
    # ------------------------------------------------------------------

    async def sweep_blocked(
        self,
        directories: Sequence[Path],
        delete: bool = False,
        confirm: Optional[RemovalConfirm] = None,
    ) -> SweepReport:
        """
        Refresh the blocklist and report (optionally remove) blocked installs

        Args:
            directories: Skills folders to inspect
            delete: Remove blocked skills
            confirm: Asked per blocked skill when delete is False
        """
        blocked = await self.blocklist.get_set(force_refresh=True)
        report = SweepReport(blocked_count=len(blocked))
        report.found = flatten(find_blocked(blocked, directories, self.manifests))

        for directory, entry in report.found:
            if delete or (confirm is not None and confirm(directory, entry)):
                if self._remove(entry.cid, [directory]):
                    report.removed.append(entry.cid)
        return report

    # ------------------------------------------------------------------
    # Local store
    # ------------------------------------------------------------------

    def _require(self, cid: str) -> SkillRecord:
        record = self.registry.get(cid)
        if record is None:
            raise SkillNotFound(f"Skill {cid} is not installed")
        return record

    async def activate(self, cid: str, target_base_dir: Optional[Path] = None) -> InstallResult:
        """
        Reinstall a tracked skill from its stored payload, without network access

        Args:
            cid: Tracked CID
            target_base_dir: Folder to install into; defaults to the last one

        Raises:
            SkillNotFound: Unknown CID or no stored payload
            IntegrityError: Stored payload no longer hashes to cid
        """
        record = self._require(cid)
        if target_base_dir is None and record.installed_path is not None:
            target_base_dir = record.installed_path.base()
        if target_base_dir is None:
            raise NotConfigured(f"No install location known for {cid}; pass a skills folder")

        if record.kind == SkillKind.BUNDLE:
            data = self.registry.load_archive(cid)
        else:
            data = self.registry.load_document(cid)
        if data is None:
            raise SkillNotFound(f"No stored payload for {cid}; install it again")

        computed = await self.hasher.compute(data)
        if computed != cid:
            raise IntegrityError(expected=cid, computed=computed)

        artifact = VerifiedArtifact(cid=cid, kind=record.kind, data=data, metadata=record.metadata)
        self._release_other_location(cid, Path(target_base_dir))
        return self.installer.install(artifact, Path(target_base_dir))

    def deactivate(self, cid: str) -> SkillRecord:
        return self.installer.deactivate(self._require(cid))

    def list_installed(self) -> List[SkillRecord]:
        return self.registry.list_all()

    def set_tags(self, cid: str, add: Iterable[str] = (), remove: Iterable[str] = ()) -> SkillRecord:
        record = self.registry.set_tags(cid, add=add, remove=remove)
        if record is None:
            raise SkillNotFound(f"Skill {cid} is not installed")
        return record


def build_client(settings: DsoulSettings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.request_timeout,
        follow_redirects=True,
        headers={"User-Agent": f"dsoul/{__version__}"},
        transport=transport,
    )


@asynccontextmanager
async def open_service(
    settings: DsoulSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> AsyncIterator[SkillService]:
    """SkillService bound to a client that is closed on exit"""
    async with build_client(settings, transport) as client:
        yield SkillService(settings, client, **kwargs)


__all__ = [
    "SkillService",
    "UpdateReport",
    "UpgradeOutcome",
    "SweepReport",
    "build_client",
    "open_service",
]
