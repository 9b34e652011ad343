"""
errors.py - Exception types for the offline layer.

StoreError covers local durability faults, NetworkError covers anything
that went wrong talking to the network (expected while offline).
"""


class OfflineError(Exception):
    """Base class for all POS offline-layer errors."""


class StoreError(OfflineError):
    """Local store fault: unknown collection, rejected write, failed read."""


class NetworkError(OfflineError):
    """A request failed or timed out."""


class ResourceUnavailable(NetworkError):
    """Cache miss, network down and no fallback document cached."""

    def __init__(self, url: str):
        super().__init__(f"Resource unavailable: {url}")
        self.url = url


class SyncItemRejected(OfflineError):
    """The remote server explicitly refused a sync item. Not retried."""

    def __init__(self, collection: str, record_id, reason: str = ""):
        super().__init__(f"Remote rejected {collection}/{record_id}: {reason}")
        self.collection = collection
        self.record_id = record_id
        self.reason = reason


class CacheGenerationError(OfflineError):
    """Declared cache generation is older than the one already stored."""
