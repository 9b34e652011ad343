"""
coordinator.py - Offline Coordinator

Owns the local database, the resource cache manager and the sync queue,
and runs the recurring duties of the POS client:

- low-stock scan over the cached menu items
- heartbeat against the remote server (flushes the queue on reconnect)

It is also the single entry point for user-initiated writes, backup
export and backup import.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from .config import Settings
from .errors import CacheGenerationError, NetworkError, StoreError, SyncItemRejected
from .network.cache_manager import ResourceCacheManager
from .services.api_client import PosApiClient
from .services.local_db import LocalDatabase
from .services.offline_mode import OfflineModeController
from .services.sync_manager import FlushResult, PendingSyncItem, SyncQueue

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Coordinator")

# Backup document key -> store collection
BACKUP_COLLECTIONS = {
    "menu": "menuItems",
    "transactions": "transactions",
    "customers": "customers",
}


@dataclass
class LowStockAlert:
    item_id: Any
    name: str
    stock: Any
    threshold: int

    @property
    def message(self) -> str:
        return f"Stok rendah: {self.name} ({self.stock})"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["message"] = self.message
        return data


class OfflineCoordinator:
    """Wires the store, the cache manager and the sync queue together."""

    def __init__(self, db: LocalDatabase, cache_manager: ResourceCacheManager,
                 sync_queue: SyncQueue, remote, controller: Optional[OfflineModeController] = None,
                 low_stock_threshold: int = 5, low_stock_interval: float = 300.0,
                 heartbeat_interval: float = 30.0):
        self.db = db
        self.cache_manager = cache_manager
        self.sync_queue = sync_queue
        self.remote = remote
        self.controller = controller or OfflineModeController()
        self.low_stock_threshold = low_stock_threshold
        self.low_stock_interval = low_stock_interval
        self.heartbeat_interval = heartbeat_interval

        self._alert_callbacks: List[Callable] = []
        self._loops: List[asyncio.Task] = []
        self._background: Set[asyncio.Task] = set()

        self.controller.on_reconnect(self._on_reconnect)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OfflineCoordinator":
        db = LocalDatabase(settings.db_path)
        remote = PosApiClient(settings.server_url, settings.api_token)
        cache_manager = ResourceCacheManager(
            db, origin=settings.asset_origin, generation=settings.cache_generation
        )
        return cls(
            db, cache_manager, SyncQueue(db, remote), remote,
            low_stock_threshold=settings.low_stock_threshold,
            low_stock_interval=settings.low_stock_interval,
            heartbeat_interval=settings.heartbeat_interval,
        )

    # ==================== Lifecycle ====================

    async def start(self, run_loops: bool = True):
        """Open the store, bring up the cache and start the periodic loops."""
        await self.db.open()

        try:
            await self.cache_manager.install()
            await self.cache_manager.activate()
        except (NetworkError, StoreError, CacheGenerationError) as e:
            logger.error(f"Cache install failed, requests pass through to the network: {e}")

        if run_loops:
            self._loops = [
                asyncio.create_task(self._low_stock_loop()),
                asyncio.create_task(self._heartbeat_loop()),
            ]
        logger.info("Offline coordinator started")

    async def stop(self):
        """Stop the loops and release the network sessions and the store."""
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

        await self.cache_manager.close()
        if hasattr(self.remote, "close"):
            await self.remote.close()
        await self.db.close()
        logger.info("Offline coordinator stopped")

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.info("No running event loop, background work skipped")
            return None
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ==================== Writes ====================

    async def save(self, collection: str, record: Dict) -> str:
        """
        Store a record locally, then send it to the server or queue it.

        Returns:
            "synced", "queued" or "rejected"

        Raises:
            StoreError: the local write failed; nothing was sent or queued
        """
        await self.db.put(collection, record)
        item = PendingSyncItem.new(collection, record)

        async with self.sync_queue.send_lock:
            # Older queued items must reach the server first
            if self.controller.is_online() and await self.sync_queue.pending_count() == 0:
                try:
                    if await self.remote.send(item):
                        return "synced"
                except SyncItemRejected as e:
                    logger.warning(f"Server rejected {collection}/{item.record_id}: {e}")
                    await self.db.log_activity('sync_rejected', 'completed', str(e))
                    return "rejected"
                except NetworkError as e:
                    self.controller.on_heartbeat_failure(str(e))

            await self.sync_queue.enqueue(item)
            return "queued"

    async def add_loyalty_points(self, customer_id, points: int) -> Dict:
        """Add loyalty points to a customer and save the updated record."""
        customer = await self.db.get("customers", customer_id)
        if customer is None:
            raise StoreError(f"Unknown customer: {customer_id}")

        customer["points"] = (customer.get("points") or 0) + points
        await self.save("customers", customer)
        logger.info(f"{customer.get('name', customer_id)} earned {points} points. Total: {customer['points']}")
        return customer

    # ==================== Sync ====================

    async def flush(self) -> FlushResult:
        return await self.sync_queue.flush()

    def _on_reconnect(self):
        self._spawn(self._flush_in_background())

    async def _flush_in_background(self):
        try:
            result = await self.flush()
            if result.failed:
                logger.warning(f"{result.failed} sync items still pending")
        except Exception as e:
            logger.error(f"Background sync failed: {e}")

    async def heartbeat(self) -> bool:
        try:
            ok = await self.remote.heartbeat()
        except NetworkError as e:
            logger.warning(f"Heartbeat Error: {e}")
            ok = False

        if ok:
            self.controller.on_heartbeat_success()
        else:
            self.controller.on_heartbeat_failure("Server unreachable")
        return ok

    async def _heartbeat_loop(self):
        while True:
            await self.heartbeat()
            await asyncio.sleep(self.heartbeat_interval)

    # ==================== Low Stock ====================

    def on_alert(self, callback: Callable):
        """
        Register a callback for low-stock alerts.

        Callback signature: (alert: LowStockAlert)
        """
        self._alert_callbacks.append(callback)

    async def check_low_stock(self, threshold: Optional[int] = None) -> List[LowStockAlert]:
        """Emit one alert per menu item at or below the threshold."""
        if threshold is None:
            threshold = self.low_stock_threshold

        alerts = []
        for item in await self.db.get_all("menuItems"):
            stock = item.get("stock") or 0
            if not isinstance(stock, (int, float)):
                logger.warning(f"Menu item {item.get('id')} has non-numeric stock: {stock!r}")
                continue
            if stock <= threshold:
                alerts.append(LowStockAlert(
                    item_id=item.get("id"),
                    name=item.get("name", str(item.get("id"))),
                    stock=stock,
                    threshold=threshold,
                ))

        for alert in alerts:
            logger.warning(alert.message)
            for callback in self._alert_callbacks:
                try:
                    callback(alert)
                except Exception as e:
                    logger.error(f"Alert callback error: {e}")

        return alerts

    async def _low_stock_loop(self):
        while True:
            await asyncio.sleep(self.low_stock_interval)
            try:
                await self.check_low_stock()
            except StoreError as e:
                logger.warning(f"Low stock check skipped: {e}")

    # ==================== Backup ====================

    async def export_backup(self) -> Dict:
        """
        Build the backup document. A collection that cannot be read is
        exported as an empty list.
        """
        backup = {}
        for key, collection in BACKUP_COLLECTIONS.items():
            try:
                backup[key] = await self.db.get_all(collection)
            except StoreError as e:
                logger.error(f"Export of {collection} failed: {e}")
                backup[key] = []

        try:
            backup["settings"] = await self.db.get_settings()
        except StoreError as e:
            logger.error(f"Export of settings failed: {e}")
            backup["settings"] = {}

        return backup

    async def write_backup(self, directory) -> Path:
        """Write the backup document to pos_backup_<date>.json."""
        backup = await self.export_backup()
        path = Path(directory) / f"pos_backup_{date.today().isoformat()}.json"
        await asyncio.to_thread(self._write_json, path, backup)
        logger.info(f"Backup written to {path}")
        return path

    @staticmethod
    def _write_json(path: Path, data: Dict):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)

    async def import_backup(self, document: Dict) -> Dict[str, int]:
        """
        Restore records and settings from a backup document.

        Returns:
            Number of records restored per backup key
        """
        if not isinstance(document, dict):
            raise ValueError("Backup document must be a JSON object")

        counts = {}
        for key, collection in BACKUP_COLLECTIONS.items():
            records = document.get(key, [])
            if not isinstance(records, list):
                raise ValueError(f"Backup key '{key}' must be a list")
            counts[key] = await self.db.put_many(collection, records)

        settings = document.get("settings")
        if isinstance(settings, dict):
            await self.db.save_settings(settings)

        await self.db.log_activity('backup_import', 'completed', json.dumps(counts))
        logger.info(f"Backup imported: {counts}")
        return counts

    # ==================== Status ====================

    async def get_status(self) -> Dict:
        status = self.controller.get_status()
        status["pending_sync_count"] = await self.sync_queue.pending_count()
        status["cache"] = await self.cache_manager.get_status()
        return status
