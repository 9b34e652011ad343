"""
ws_local.py - Local WebSocket Bridge for the POS front-end

Lets the local POS front-end save records through the coordinator and
pushes status changes and low-stock alerts to every connected client.
"""

import asyncio
import json
import logging
from typing import Set

import websockets

from ..errors import StoreError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalBridge")


class LocalBridge:
    """WebSocket server in front of an OfflineCoordinator."""

    def __init__(self, coordinator):
        self.coordinator = coordinator
        self.clients: Set = set()
        self._tasks: Set[asyncio.Task] = set()

        coordinator.on_alert(lambda alert: self._spawn(self.broadcast({
            "type": "low_stock",
            "data": alert.to_dict(),
        })))
        coordinator.controller.on_mode_change(
            lambda old, new, reason: self._spawn(self.broadcast_status())
        )

    def _spawn(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def broadcast(self, message: dict):
        """Send a message to all connected clients."""
        if not self.clients:
            return
        payload = json.dumps(message)
        await asyncio.gather(
            *[client.send(payload) for client in list(self.clients)],
            return_exceptions=True
        )

    async def broadcast_status(self):
        await self.broadcast({"type": "status", "data": await self._status()})

    async def _status(self) -> dict:
        status = await self.coordinator.get_status()
        status["message"] = "Connected to Local Bridge"
        return status

    async def handler(self, websocket):
        """
        Handles WebSocket connections from the local POS front-end.

        Supports:
        - Status requests and broadcasting (online/offline mode)
        - Saving records (stored locally, synced or queued)
        - Manual sync trigger
        """
        logger.info(f"Client connected: {websocket.remote_address}")
        self.clients.add(websocket)

        try:
            await websocket.send(json.dumps({"type": "status", "data": await self._status()}))

            async for message in websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.error("Invalid JSON received")
                    await websocket.send(json.dumps({
                        "type": "error",
                        "error": "Invalid JSON format"
                    }))
                    continue

                if not isinstance(data, dict):
                    logger.error("Non-object message received")
                    await websocket.send(json.dumps({
                        "type": "error",
                        "error": "Message must be a JSON object"
                    }))
                    continue

                await websocket.send(json.dumps(await self.dispatch(data)))

        except websockets.exceptions.ConnectionClosed:
            logger.info("Client disconnected")
        finally:
            self.clients.discard(websocket)

    async def dispatch(self, data: dict) -> dict:
        """Handle one decoded message and build the reply."""
        msg_type = data.get("type")
        logger.info(f"Received: {msg_type}")

        # ==================== Save Record ====================
        if msg_type == "save":
            collection = data.get("collection")
            record = data.get("record")
            try:
                result = await self.coordinator.save(collection, record)
            except StoreError as e:
                logger.error(f"Failed to store record locally: {e}")
                return {
                    "type": "save_error",
                    "error": str(e),
                    "code": "STORE_FAILED"
                }

            self._spawn(self.broadcast_status())
            return {
                "type": "save_ack",
                "status": result,
                "collection": collection,
                "id": record.get("id"),
            }

        # ==================== Manual Sync ====================
        elif msg_type == "sync":
            result = await self.coordinator.flush()
            return {
                "type": "sync_result",
                "confirmed": result.confirmed,
                "failed": result.failed,
            }

        # ==================== Status Request ====================
        elif msg_type == "get_status":
            return {"type": "status", "data": await self._status()}

        # ==================== Ping/Pong ====================
        elif msg_type == "ping":
            return {"type": "pong", "timestamp": data.get("timestamp")}

        logger.warning(f"Unknown message type: {msg_type}")
        return {"type": "error", "error": f"Unknown message type: {msg_type}"}

    async def start(self, host: str = "0.0.0.0", port: int = 8002):
        """
        Start the Local WebSocket Bridge server.

        Returns:
            The running server; close it on shutdown.
        """
        server = await websockets.serve(self.handler, host, port)
        logger.info(f"Local WebSocket Bridge started on ws://{host}:{port}")
        return server
