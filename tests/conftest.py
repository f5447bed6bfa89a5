from __future__ import annotations

import io
import zipfile
from typing import Callable, Dict, List, Optional

import httpx
import pytest

API = "/wp-json/diamond-soul/v1/"


class FakeHasher:
    """Stands in for `ipfs add --only-hash`: CIDs are whatever the test registers"""

    def __init__(self, known: Optional[Dict[bytes, str]] = None):
        self.known: Dict[bytes, str] = dict(known or {})
        self.calls = 0

    def register(self, data: bytes, cid: str) -> str:
        self.known[data] = cid
        return cid

    async def compute(self, data: bytes) -> str:
        self.calls += 1
        return self.known.get(data, "bafkUNKNOWN")


def build_zip(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture
def hasher() -> FakeHasher:
    return FakeHasher()


@pytest.fixture
def make_zip() -> Callable[[Dict[str, bytes]], bytes]:
    return build_zip


@pytest.fixture(autouse=True)
def dsoul_home(tmp_path, monkeypatch):
    """Keep settings, records and the blocklist cache out of the real home"""
    home = tmp_path / "dsoul-home"
    monkeypatch.setenv("DSOUL_HOME", str(home))
    monkeypatch.delenv("DSOUL_DEBUG", raising=False)
    return home


class FakeNetwork:
    """In-memory IPFS gateway (gw.test) plus registry API (registry.test)"""

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.entries: Dict[str, List[dict]] = {}
        self.shortnames: Dict[str, str] = {}
        self.graphs: Dict[str, dict] = {}
        self.blocklist: List[str] = []
        self.requests: List[httpx.Request] = []

    def publish(self, hasher: FakeHasher, cid: str, data: bytes, **entry) -> None:
        hasher.register(data, cid)
        self.files[cid] = data
        if entry:
            self.entries.setdefault(cid, []).append(entry)

    def gateway_hits(self) -> List[str]:
        return [r.url.path for r in self.requests if r.url.host == "gw.test"]

    def registry_hits(self, endpoint: str) -> int:
        return sum(
            1 for r in self.requests
            if r.url.host == "registry.test" and r.url.path.startswith(API + endpoint)
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "gw.test":
            cid = path.rsplit("/", 1)[-1]
            if cid in self.files:
                return httpx.Response(200, content=self.files[cid])
            return httpx.Response(504)

        endpoint = path[len(API):] if path.startswith(API) else ""
        if endpoint == "search_by_cid":
            return httpx.Response(200, json=self.entries.get(request.url.params["cid"], []))
        if endpoint == "resolve_shortname":
            cid = self.shortnames.get(request.url.params["shortname"])
            if cid is None:
                return httpx.Response(404, json={"code": "not_found"})
            return httpx.Response(200, json={"cid": cid})
        if endpoint == "blocklist":
            return httpx.Response(200, json=self.blocklist)
        if endpoint.startswith("file/") and endpoint.endswith("/graph"):
            graph = self.graphs.get(endpoint[len("file/"):-len("/graph")])
            if graph is not None:
                return httpx.Response(200, json=graph)
        return httpx.Response(404)


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()
