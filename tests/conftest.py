"""Shared fixtures: a temporary local database, a fake network and a fake sync server."""

import asyncio

import pytest

from pos_offline.coordinator import OfflineCoordinator
from pos_offline.errors import NetworkError
from pos_offline.network.cache_manager import ASSETS_TO_CACHE, ResourceCacheManager, Response
from pos_offline.services.local_db import LocalDatabase
from pos_offline.services.offline_mode import OfflineModeController
from pos_offline.services.sync_manager import SyncQueue

ORIGIN = "http://pos.test"


def resolve(path):
    if path.startswith("http"):
        return path
    return ORIGIN + path


class FakeFetcher:
    """Stands in for HttpFetcher. Serves a url -> body map, or fails when offline."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.online = True
        self.calls = []

    async def fetch(self, request):
        self.calls.append((request.method, request.url))
        if not self.online:
            raise NetworkError(f"Network unreachable: {request.url}")
        if request.url not in self.responses:
            return Response(status=404, body=b"not found", url=request.url)
        return Response(
            status=200,
            body=self.responses[request.url],
            headers={"Content-Type": "text/html; charset=utf-8"},
            url=request.url,
        )

    async def close(self):
        pass


class FakeRemote:
    """Stands in for PosApiClient. Outcomes are consumed per send() call."""

    def __init__(self, outcomes=None, healthy=True):
        self.outcomes = list(outcomes or [])
        self.healthy = healthy
        self.sent = []

    async def send(self, item):
        self.sent.append(item)
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def heartbeat(self):
        return self.healthy

    async def close(self):
        pass


@pytest.fixture
def asset_responses():
    return {resolve(path): f"asset {path}".encode() for path in ASSETS_TO_CACHE}


@pytest.fixture
def fetcher(asset_responses):
    return FakeFetcher(asset_responses)


@pytest.fixture
def db(tmp_path):
    database = LocalDatabase(tmp_path / "local.db")
    yield database
    asyncio.run(database.close())


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def make_coordinator(tmp_path, fetcher, remote):
    """Build a coordinator on a temporary database. Stopped at teardown."""
    created = []

    def factory(fallback="/index.html", **kwargs):
        db = LocalDatabase(tmp_path / "coordinator.db")
        cache_manager = ResourceCacheManager(db, fetcher=fetcher, origin=ORIGIN, fallback=fallback)
        coordinator = OfflineCoordinator(
            db, cache_manager, SyncQueue(db, remote), remote,
            controller=OfflineModeController(), **kwargs
        )
        created.append(coordinator)
        return coordinator

    yield factory

    for coordinator in created:
        asyncio.run(coordinator.db.close())
