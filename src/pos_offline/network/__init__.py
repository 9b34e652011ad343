"""
Network module for the POS offline client.

Resource cache manager and the local WebSocket bridge.
"""

from .cache_manager import ResourceCacheManager, HttpFetcher, Request, Response, CacheState

__all__ = [
    'ResourceCacheManager',
    'HttpFetcher',
    'Request',
    'Response',
    'CacheState',
]
