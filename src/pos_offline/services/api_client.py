"""
api_client.py - Remote POS Server Client

Sends pending sync items to the remote server one record at a time
(idempotent upsert keyed by collection + record id) and checks server
reachability for the offline mode controller.
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import aiohttp

from ..errors import NetworkError, SyncItemRejected

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("PosApiClient")

# Statuses meaning the server looked at the item and refused it for good
REJECT_STATUSES = {400, 409, 422}


class PosApiClient:
    """aiohttp client for the remote POS sync server."""

    def __init__(self, base_url: str, api_token: str = "", timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.api_token = api_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._session = aiohttp.ClientSession(headers=headers, timeout=self.timeout)
        return self._session

    async def send(self, item) -> bool:
        """
        Upload one pending sync item.

        Returns:
            True when the server acknowledged the item, False otherwise

        Raises:
            SyncItemRejected: the server refused the item
            NetworkError: the server could not be reached
        """
        endpoint = f"{self.base_url}/sync/{quote(item.collection)}/{quote(str(item.record_id), safe='')}"
        payload = {"record": item.record, "queued_at": item.created_at}

        try:
            async with self._get_session().put(endpoint, json=payload) as response:
                if response.status in (200, 201, 204):
                    return True

                error_text = await response.text()
                if response.status in REJECT_STATUSES:
                    raise SyncItemRejected(item.collection, item.record_id, error_text)

                logger.error(f"Sync of {item.collection}/{item.record_id} failed with status {response.status}: {error_text}")
                return False

        except asyncio.TimeoutError as e:
            raise NetworkError(f"Sync of {item.collection}/{item.record_id} timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Sync connection error: {e}") from e

    async def heartbeat(self) -> bool:
        """Check that the server is reachable and healthy."""
        endpoint = f"{self.base_url}/health"
        try:
            async with self._get_session().get(endpoint) as response:
                return response.status == 200
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning(f"Heartbeat Error: {e}")
            return False

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
