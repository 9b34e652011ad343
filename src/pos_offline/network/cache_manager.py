"""
cache_manager.py - Resource Cache Manager

Intercepts GET requests for front-end assets and data and answers them
cache-first from the local store, refreshing the cached copy in the
background. Responds to three lifecycle hooks:

- install:  purge stale generations and pre-cache the asset manifest
- activate: start intercepting requests immediately
- fetch:    answer one request
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Set
from urllib.parse import urljoin, urlsplit

import aiohttp

from ..errors import CacheGenerationError, NetworkError, ResourceUnavailable, StoreError
from ..services.local_db import LocalDatabase

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("CacheManager")

# Bump to invalidate every cached asset on the next start
CACHE_GENERATION = 1

ASSETS_TO_CACHE = (
    "/",
    "/index.html",
    "/enhancements.js",
    "/manifest.json",
    "https://cdn.jsdelivr.net/npm/chart.js",
    "https://cdn.jsdelivr.net/npm/chartjs-adapter-date-fns/dist/chartjs-adapter-date-fns.bundle.min.js",
)

FALLBACK_DOCUMENT = "/index.html"

# Hop-by-hop and encoding headers are not replayed from the cache
_SKIPPED_HEADERS = {
    "connection", "keep-alive", "transfer-encoding", "content-encoding",
    "content-length", "set-cookie",
}


@dataclass
class Request:
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass
class Response:
    status: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.status == 200


class CacheState(Enum):
    """Lifecycle of one manager instance. Only moves forward."""
    NEW = "new"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVE = "active"


class HttpFetcher:
    """Performs real network requests with aiohttp."""

    def __init__(self, timeout: float = 15):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def fetch(self, request: Request) -> Response:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

        try:
            async with self._session.request(
                request.method, request.url, headers=request.headers, data=request.body
            ) as resp:
                body = await resp.read()
                headers = {
                    k: v for k, v in resp.headers.items()
                    if k.lower() not in _SKIPPED_HEADERS
                }
                return Response(status=resp.status, body=body, headers=headers, url=str(resp.url))
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Request timed out: {request.url}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request failed: {request.url}: {e}") from e

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class ResourceCacheManager:
    """
    Cache-first interception of GET requests, backed by LocalDatabase.

    Entries live under an integer generation. Installing a newer generation
    purges all older entries at once and pre-caches the asset manifest.
    """

    def __init__(self, db: LocalDatabase, fetcher=None, origin: str = "http://localhost:8000",
                 generation: int = CACHE_GENERATION, manifest: Iterable[str] = ASSETS_TO_CACHE,
                 fallback: Optional[str] = FALLBACK_DOCUMENT):
        self.db = db
        self.fetcher = fetcher or HttpFetcher()
        self.origin = origin.rstrip('/') + '/'
        self.generation = generation
        self.manifest = [self.resolve(path) for path in manifest]
        self.fallback_url = self.resolve(fallback) if fallback else None
        self.state = CacheState.NEW
        self._background: Set[asyncio.Task] = set()

    def resolve(self, path: str) -> str:
        """Resolve an asset path against the asset origin."""
        return urljoin(self.origin, path)

    @property
    def external_origins(self) -> Dict[str, str]:
        """Host -> origin for manifest assets served from another origin (CDNs)."""
        origins = {}
        for url in self.manifest:
            if not url.startswith(self.origin):
                parts = urlsplit(url)
                origins[parts.netloc] = f"{parts.scheme}://{parts.netloc}"
        return origins

    @property
    def is_controlling(self) -> bool:
        return self.state == CacheState.ACTIVE

    # ==================== Lifecycle ====================

    async def install(self):
        """
        Prepare this manager's generation.

        Raises:
            CacheGenerationError: a newer generation is already stored
            NetworkError: a manifest asset could not be fetched
        """
        if self.state != CacheState.NEW:
            raise RuntimeError(f"Cannot install from state {self.state.value}")
        self.state = CacheState.INSTALLING

        stored = await self.db.get_cache_generation()
        if stored is not None and stored > self.generation:
            raise CacheGenerationError(
                f"Stored cache generation {stored} is newer than {self.generation}"
            )

        if stored != self.generation:
            purged = await self.db.adopt_cache_generation(self.generation)
            logger.info(f"Cache generation {stored} -> {self.generation}, purged {purged} entries")
            await self.db.log_activity(
                'cache_generation', 'completed', f"{stored} -> {self.generation}, purged {purged}"
            )

        await self._precache()
        self.state = CacheState.INSTALLED
        logger.info(f"Cache generation {self.generation} installed ({len(self.manifest)} assets)")

    async def _precache(self):
        for url in self.manifest:
            if await self.db.cache_match(self.generation, "GET", url) is not None:
                continue

            response = await self.fetcher.fetch(Request(url))
            if not response.ok:
                raise NetworkError(f"Pre-cache of {url} failed with HTTP {response.status}")
            await self._store(url, response)

    async def activate(self):
        """Adopt the installed generation and claim request interception."""
        if self.state != CacheState.INSTALLED:
            raise RuntimeError(f"Cannot activate from state {self.state.value}")
        self.state = CacheState.ACTIVE
        logger.info(f"Cache generation {self.generation} active, intercepting requests")

    # ==================== Fetch ====================

    async def fetch(self, request: Request) -> Response:
        """
        Answer one request.

        Raises:
            ResourceUnavailable: not cached, network down, no fallback cached
            NetworkError: a pass-through (non-GET) request failed
        """
        if request.method.upper() != "GET" or not self.is_controlling:
            return await self.fetcher.fetch(request)

        cached = await self._match(request.url)
        if cached is not None:
            self._refresh_in_background(request)
            return cached

        try:
            response = await self.fetcher.fetch(request)
        except NetworkError as e:
            logger.warning(f"Network failed for {request.url}: {e}")
            fallback = await self._match(self.fallback_url) if self.fallback_url else None
            if fallback is not None:
                return fallback
            raise ResourceUnavailable(request.url) from e

        if response.ok:
            await self._store(request.url, response, quiet=True)
        return response

    async def _match(self, url: str) -> Optional[Response]:
        try:
            entry = await self.db.cache_match(self.generation, "GET", url)
        except StoreError as e:
            logger.error(f"Cache lookup failed for {url}: {e}")
            return None
        if entry is None:
            return None
        return Response(
            status=entry['status'],
            body=entry['body'],
            headers=entry['headers'],
            url=entry['url'],
            from_cache=True,
        )

    async def _store(self, url: str, response: Response, quiet: bool = False):
        try:
            await self.db.cache_put(
                self.generation, "GET", url, response.status, response.headers, response.body
            )
        except StoreError as e:
            if not quiet:
                raise
            logger.error(f"Cache write failed for {url}: {e}")

    # ==================== Background Refresh ====================

    def _refresh_in_background(self, request: Request):
        task = asyncio.create_task(self._refresh(request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(self, request: Request):
        try:
            response = await self.fetcher.fetch(request)
            if response.ok:
                await self._store(request.url, response)
        except (NetworkError, StoreError) as e:
            logger.debug(f"Background refresh of {request.url} skipped: {e}")
        except Exception as e:
            logger.error(f"Background refresh of {request.url} failed: {e}")

    async def wait_for_background(self):
        """Wait for outstanding background refreshes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self):
        await self.wait_for_background()
        if hasattr(self.fetcher, "close"):
            await self.fetcher.close()

    async def get_status(self) -> Dict:
        return {
            "generation": self.generation,
            "state": self.state.value,
            "entries": await self.db.cache_count(self.generation),
        }
