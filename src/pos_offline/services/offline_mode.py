"""
offline_mode.py - Offline Mode Controller

This module tracks whether the POS client can reach the remote server,
based on heartbeat success or failure, and notifies listeners when the
connection is lost or restored.
"""

import logging
from enum import Enum
from typing import Optional, Callable, List
from datetime import datetime

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineMode")


class ConnectionMode(Enum):
    """POS client connectivity modes."""
    ONLINE = "online"      # Remote server reachable, writes go straight through
    OFFLINE = "offline"    # Writes are queued locally
    UNKNOWN = "unknown"    # No heartbeat result yet


class OfflineModeController:
    """
    Controls the POS client's online/offline state.

    Monitors heartbeat status and triggers mode transitions when
    the connection to the server is lost or restored.
    """

    def __init__(self, max_failures_before_offline: int = 3):
        self.current_mode: ConnectionMode = ConnectionMode.UNKNOWN
        self.last_heartbeat_success: Optional[datetime] = None
        self.consecutive_failures: int = 0
        self.max_failures_before_offline = max_failures_before_offline

        # Callbacks for mode changes
        self._on_mode_change_callbacks: List[Callable] = []
        self._on_reconnect_callbacks: List[Callable] = []

    # ==================== Mode Management ====================

    def get_current_mode(self) -> ConnectionMode:
        return self.current_mode

    def is_online(self) -> bool:
        return self.current_mode == ConnectionMode.ONLINE

    def is_offline(self) -> bool:
        return self.current_mode == ConnectionMode.OFFLINE

    def _set_mode(self, new_mode: ConnectionMode, reason: str = ""):
        """
        Set the mode and trigger callbacks.

        Args:
            new_mode: The new mode to set
            reason: Reason for the mode change (for logging)
        """
        if new_mode == self.current_mode:
            return

        old_mode = self.current_mode
        self.current_mode = new_mode

        logger.info(f"Mode changed: {old_mode.value} -> {new_mode.value} | Reason: {reason}")

        for callback in self._on_mode_change_callbacks:
            try:
                callback(old_mode, new_mode, reason)
            except Exception as e:
                logger.error(f"Mode change callback error: {e}")

    # ==================== Heartbeat Handling ====================

    def on_heartbeat_success(self):
        """Called when a heartbeat to the server succeeds."""
        self.last_heartbeat_success = datetime.now()
        self.consecutive_failures = 0

        if self.current_mode == ConnectionMode.ONLINE:
            return

        if self.current_mode == ConnectionMode.OFFLINE:
            self._set_mode(ConnectionMode.ONLINE, "Connection restored")
        else:
            self._set_mode(ConnectionMode.ONLINE, "Initial connection established")

        # Reconnect callbacks flush the sync queue
        for callback in self._on_reconnect_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Reconnect callback error: {e}")

    def on_heartbeat_failure(self, error: str = ""):
        """
        Called when a heartbeat or a direct request to the server fails.

        Args:
            error: Optional error message
        """
        self.consecutive_failures += 1

        logger.warning(f"Heartbeat failed ({self.consecutive_failures}/{self.max_failures_before_offline}): {error}")

        if self.consecutive_failures >= self.max_failures_before_offline:
            self._set_mode(
                ConnectionMode.OFFLINE,
                f"Connection lost after {self.consecutive_failures} failures"
            )

    def on_connection_lost(self, reason: str = "Network unreachable"):
        """Enter offline mode immediately."""
        self._set_mode(ConnectionMode.OFFLINE, reason)
        self.consecutive_failures = self.max_failures_before_offline

    # ==================== Callbacks ====================

    def on_mode_change(self, callback: Callable):
        """
        Register a callback for mode changes.

        Callback signature: (old_mode: ConnectionMode, new_mode: ConnectionMode, reason: str)
        """
        self._on_mode_change_callbacks.append(callback)

    def on_reconnect(self, callback: Callable):
        """
        Register a callback for whenever the server becomes reachable,
        including the first successful heartbeat.

        Callback signature: ()
        """
        self._on_reconnect_callbacks.append(callback)

    # ==================== Status Report ====================

    def get_status(self) -> dict:
        return {
            "mode": self.current_mode.value,
            "is_online": self.is_online(),
            "last_heartbeat": self.last_heartbeat_success.isoformat() if self.last_heartbeat_success else None,
            "consecutive_failures": self.consecutive_failures
        }
