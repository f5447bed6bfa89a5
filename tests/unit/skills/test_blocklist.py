from __future__ import annotations

import asyncio
import json
from pathlib import Path

from dsoul.skills.blocklist import BlocklistManager, find_blocked
from dsoul.skills.errors import RegistryError
from dsoul.skills.manifest import ManifestStore
from dsoul.skills.models import ManifestEntry


class _Clock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _BlocklistProvider:
    def __init__(self, cids=(), fail: bool = False):
        self.cids = set(cids)
        self.fail = fail
        self.calls = 0

    async def fetch_blocklist(self):
        self.calls += 1
        if self.fail:
            raise RegistryError("provider down")
        return set(self.cids)


def test_cache_is_reused_within_ttl(tmp_path: Path) -> None:
    provider = _BlocklistProvider({"bad1"})
    clock = _Clock()
    manager = BlocklistManager(provider, tmp_path / "blocklist.json", ttl_seconds=3600, clock=clock)

    assert asyncio.run(manager.get_set()) == frozenset({"bad1"})
    provider.cids = {"bad1", "bad2"}
    clock.now += 1800
    assert asyncio.run(manager.get_set()) == frozenset({"bad1"})
    assert provider.calls == 1

    clock.now += 3600
    assert asyncio.run(manager.get_set()) == frozenset({"bad1", "bad2"})
    assert provider.calls == 2


def test_cache_file_shape_and_reload(tmp_path: Path) -> None:
    cache = tmp_path / "blocklist.json"
    clock = _Clock(5000.0)
    asyncio.run(BlocklistManager(_BlocklistProvider({"b", "a"}), cache, clock=clock).get_set())

    assert json.loads(cache.read_text(encoding="utf-8")) == {"cids": ["a", "b"], "fetchedAt": 5000.0}

    # a new process reads the file instead of asking the provider
    provider = _BlocklistProvider({"other"})
    assert asyncio.run(BlocklistManager(provider, cache, clock=clock).is_blocked("a"))
    assert provider.calls == 0


def test_force_refresh_bypasses_ttl(tmp_path: Path) -> None:
    provider = _BlocklistProvider({"bad1"})
    manager = BlocklistManager(provider, tmp_path / "blocklist.json", clock=_Clock())

    asyncio.run(manager.get_set())
    provider.cids = {"bad9"}

    assert asyncio.run(manager.get_set(force_refresh=True)) == frozenset({"bad9"})


def test_stale_cache_is_used_when_provider_fails(tmp_path: Path) -> None:
    cache = tmp_path / "blocklist.json"
    cache.write_text(json.dumps({"cids": ["old"], "fetchedAt": 0}), encoding="utf-8")
    provider = _BlocklistProvider(fail=True)

    manager = BlocklistManager(provider, cache, ttl_seconds=60, clock=_Clock())

    assert asyncio.run(manager.get_set()) == frozenset({"old"})
    assert provider.calls == 1


def test_no_cache_and_no_provider_is_empty(tmp_path: Path) -> None:
    manager = BlocklistManager(_BlocklistProvider(fail=True), tmp_path / "blocklist.json", clock=_Clock())
    assert asyncio.run(manager.get_set()) == frozenset()
    assert not asyncio.run(manager.is_blocked("anything"))


def test_find_blocked_groups_by_folder(tmp_path: Path) -> None:
    store = ManifestStore()
    one, two = tmp_path / "one", tmp_path / "two"
    store.upsert(one, ManifestEntry(cid="good"))
    store.upsert(one, ManifestEntry(cid="bad"))
    store.upsert(two, ManifestEntry(cid="good"))

    found = find_blocked({"bad"}, [one, two, tmp_path / "missing"], store)

    assert list(found) == [one]
    assert [e.cid for e in found[one]] == ["bad"]
