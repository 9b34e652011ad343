"""
Services module for the POS offline client.

Provides the local store, the sync queue, the remote server client and
connectivity tracking.
"""

from .local_db import LocalDatabase, StoreHandle, COLLECTIONS
from .offline_mode import OfflineModeController, ConnectionMode
from .sync_manager import SyncQueue, PendingSyncItem, FlushResult
from .api_client import PosApiClient

__all__ = [
    'LocalDatabase',
    'StoreHandle',
    'COLLECTIONS',
    'OfflineModeController',
    'ConnectionMode',
    'SyncQueue',
    'PendingSyncItem',
    'FlushResult',
    'PosApiClient',
]
