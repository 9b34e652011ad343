"""
POS offline client.

Keeps a point-of-sale front-end working without a network connection:
cached assets, a local record store and a store-and-forward sync queue.
"""

__version__ = "1.0.0"
