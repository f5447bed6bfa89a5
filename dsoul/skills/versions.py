"""
Version Resolver: does a newer CID exist for an installed skill?

The provider's graph endpoint has answered in several shapes over time. They
are parsed once, here, into one of:

- NodeGraph:     {"nodes": {cid: {"next": cid|null}}, "currentCid": cid}
- LatestPointer: {"latestCid": cid} or {"latest": cid}
- VersionList:   {"versions": [cid | {"cid": cid}, ...]}  (oldest first)

and latest_cid() interprets the parsed value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dsoul.skills.errors import NetworkError
from dsoul.skills.models import Provenance
from dsoul.skills.provider import DsoulProviderClient

logger = logging.getLogger(__name__)


@dataclass
class NodeGraph:
    nodes: Dict[str, Optional[str]]  # cid -> next cid
    current_cid: Optional[str] = None


@dataclass
class LatestPointer:
    latest_cid: str


@dataclass
class VersionList:
    versions: List[str] = field(default_factory=list)


VersionGraph = Union[NodeGraph, LatestPointer, VersionList]


class UpgradeStatus(str, Enum):
    AVAILABLE = "available"
    UP_TO_DATE = "up_to_date"
    UNCHECKED = "unchecked"  # no upstream reference to check against
    ERROR = "error"


@dataclass
class UpgradeCheck:
    cid: str
    status: UpgradeStatus
    latest_cid: Optional[str] = None
    message: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status == UpgradeStatus.AVAILABLE


def _first_str(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _parse_nodes(raw: Any) -> Dict[str, Optional[str]]:
    nodes: Dict[str, Optional[str]] = {}
    if isinstance(raw, dict):
        items = [(cid, node) for cid, node in raw.items()]
    elif isinstance(raw, list):
        items = [(node.get("cid"), node) for node in raw if isinstance(node, dict)]
    else:
        return nodes

    for cid, node in items:
        if not isinstance(cid, str) or not cid:
            continue
        next_cid = None
        if isinstance(node, dict):
            next_cid = _first_str(node, "next", "next_cid", "nextCid")
        elif isinstance(node, str) and node:
            next_cid = node
        nodes[cid] = next_cid
    return nodes


def parse_version_graph(payload: Any) -> Optional[VersionGraph]:
    """Parse a graph response; None when no known shape matches"""
    if not isinstance(payload, dict):
        return None

    if "nodes" in payload:
        nodes = _parse_nodes(payload.get("nodes"))
        if nodes:
            return NodeGraph(
                nodes=nodes,
                current_cid=_first_str(payload, "currentCid", "current_cid", "current"),
            )

    latest = _first_str(payload, "latestCid", "latest_cid", "latest")
    if latest:
        return LatestPointer(latest)

    versions = payload.get("versions")
    if isinstance(versions, list):
        cids: List[str] = []
        for item in versions:
            if isinstance(item, str) and item:
                cids.append(item)
            elif isinstance(item, dict):
                cid = _first_str(item, "cid")
                if cid:
                    cids.append(cid)
        if cids:
            return VersionList(cids)

    return None


def follow_chain(nodes: Dict[str, Optional[str]], start: str) -> str:
    """
    Follow next pointers from start to the end of the chain

    Terminates on a node with no next, a next that is not in the map, or a
    cycle (the last cid before revisiting is returned).
    """
    seen = {start}
    current = start
    while True:
        if current not in nodes:
            return current
        next_cid = nodes[current]
        if not next_cid or next_cid in seen:
            return current
        seen.add(next_cid)
        current = next_cid


def latest_cid(graph: Optional[VersionGraph], installed_cid: Optional[str] = None) -> Optional[str]:
    if graph is None:
        return None
    if isinstance(graph, NodeGraph):
        start = graph.current_cid or installed_cid
        if start is None:
            return None
        return follow_chain(graph.nodes, start)
    if isinstance(graph, LatestPointer):
        return graph.latest_cid
    if isinstance(graph, VersionList):
        return graph.versions[-1] if graph.versions else None
    return None


class VersionResolver:
    """Upgrade checks against the provider's version graph"""

    def __init__(self, provider: DsoulProviderClient):
        self.provider = provider

    async def resolve_upgrade(self, cid: str, reference: Optional[Provenance]) -> UpgradeCheck:
        """
        Check whether a newer CID exists

        Args:
            cid: Installed CID
            reference: Stored provenance (upstream id or link)

        Returns:
            UpgradeCheck; UNCHECKED when there is no upstream reference,
            ERROR when the graph could not be fetched or parsed
        """
        if reference is None or not reference.has_upstream():
            return UpgradeCheck(cid, UpgradeStatus.UNCHECKED, message="No upstream reference stored")

        ref: Union[int, str] = (
            reference.upstream_id if reference.upstream_id is not None else reference.upstream_link
        )
        try:
            payload = await self.provider.fetch_version_graph(ref)
        except NetworkError as e:
            logger.warning(f"Version graph for {cid} unavailable: {e}")
            return UpgradeCheck(cid, UpgradeStatus.ERROR, message=str(e))

        graph = parse_version_graph(payload)
        if graph is None:
            message = "Unrecognised version graph response"
            logger.warning(f"{message} for {cid}: {str(payload)[:200]}")
            return UpgradeCheck(cid, UpgradeStatus.ERROR, message=message)

        latest = latest_cid(graph, installed_cid=cid)
        if latest is not None and latest != cid:
            return UpgradeCheck(cid, UpgradeStatus.AVAILABLE, latest_cid=latest)
        return UpgradeCheck(cid, UpgradeStatus.UP_TO_DATE, latest_cid=latest or cid)


__all__ = [
    "NodeGraph",
    "LatestPointer",
    "VersionList",
    "VersionGraph",
    "UpgradeStatus",
    "UpgradeCheck",
    "parse_version_graph",
    "follow_chain",
    "latest_cid",
    "VersionResolver",
]
