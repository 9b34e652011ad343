"""
sync_manager.py - Store-and-Forward Sync Queue

Local writes made while the POS is offline are appended to a durable
queue in the local database, then sent to the server one item at a time
once the connection is restored.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional

from ..errors import NetworkError, SyncItemRejected
from .local_db import LocalDatabase

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SyncQueue")


@dataclass
class PendingSyncItem:
    """A local mutation waiting for remote confirmation."""
    collection: str
    record: Dict
    created_at: str
    seq: Optional[int] = None

    @property
    def record_id(self):
        return self.record.get('id')

    @classmethod
    def new(cls, collection: str, record: Dict) -> "PendingSyncItem":
        return cls(
            collection=collection,
            record=dict(record),
            created_at=datetime.utcnow().isoformat() + "Z",
        )


class FlushResult(NamedTuple):
    confirmed: int
    failed: int


class SyncQueue:
    """
    Durable queue of pending sync items.

    Items are only removed after the remote acknowledges them, or when the
    remote explicitly rejects them. A plain failure keeps the item queued
    for the next flush.
    """

    def __init__(self, db: LocalDatabase, remote):
        self.db = db
        self.remote = remote
        self.is_syncing = False
        # Held by anything that sends to the remote, so items go out in order
        self.send_lock = asyncio.Lock()

    async def enqueue(self, item: PendingSyncItem) -> PendingSyncItem:
        """Append an item. Earlier items for the same record are kept."""
        item.seq = await self.db.enqueue_sync_item(item.collection, item.record, item.created_at)
        logger.info(f"Queued {item.collection}/{item.record_id} for sync (seq {item.seq})")
        return item

    async def pending(self) -> List[PendingSyncItem]:
        rows = await self.db.get_pending_sync_items()
        return [PendingSyncItem(**row) for row in rows]

    async def pending_count(self) -> int:
        return await self.db.get_pending_count()

    async def flush(self) -> FlushResult:
        """
        Send every pending item to the remote server in enqueue order.

        Returns:
            FlushResult(confirmed, failed)
        """
        if self.is_syncing:
            logger.warning("Sync already in progress, skipping")
            return FlushResult(0, 0)

        self.is_syncing = True
        try:
            async with self.send_lock:
                return await self._flush_pending()
        finally:
            self.is_syncing = False

    async def _flush_pending(self) -> FlushResult:
        pending = await self.pending()

        if not pending:
            logger.info("No pending items to sync")
            return FlushResult(0, 0)

        logger.info(f"Syncing {len(pending)} pending items...")
        await self.db.log_activity('sync_start', 'pending', f"Syncing {len(pending)} items")

        confirmed = failed = 0
        for item in pending:
            try:
                acked = await self.remote.send(item)
            except SyncItemRejected as e:
                logger.warning(f"Dropping rejected item seq {item.seq}: {e}")
                await self.db.remove_sync_item(item.seq)
                await self.db.log_activity('sync_rejected', 'completed', str(e))
                failed += 1
                continue
            except NetworkError as e:
                logger.warning(f"Sync of seq {item.seq} failed: {e}")
                acked = False

            if acked:
                await self.db.remove_sync_item(item.seq)
                confirmed += 1
            else:
                failed += 1

        status = 'completed' if failed == 0 else 'pending'
        await self.db.log_activity(
            'sync_complete', status, f"Confirmed {confirmed}, failed {failed}"
        )
        logger.info(f"Sync complete: {confirmed} confirmed, {failed} failed")
        return FlushResult(confirmed, failed)

    async def get_status(self) -> Dict:
        return {
            "is_syncing": self.is_syncing,
            "pending_count": await self.pending_count(),
            "last_sync_logs": await self.db.get_recent_logs(5),
        }
