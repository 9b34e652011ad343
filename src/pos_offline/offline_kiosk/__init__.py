"""
Offline Kiosk Module

Local front-end server for the POS client: cached assets and the local data API.
"""

from .app import create_app, build_server

__all__ = ['create_app', 'build_server']
