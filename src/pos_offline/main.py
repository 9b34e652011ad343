import asyncio
import logging
import sys

from .config import load_settings
from .coordinator import OfflineCoordinator
from .network.ws_local import LocalBridge
from .offline_kiosk.app import build_server, create_app

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Main")


async def run(settings):
    coordinator = OfflineCoordinator.from_settings(settings)

    if "--export" in sys.argv:
        # One-shot backup, no loops or servers
        await coordinator.start(run_loops=False)
        try:
            path = await coordinator.write_backup(settings.data_dir)
            print(f"[+] Backup written: {path}")
        finally:
            await coordinator.stop()
        return

    await coordinator.start()

    print("[*] Starting Local WebSocket Bridge...")
    bridge = LocalBridge(coordinator)
    ws_server = await bridge.start(port=settings.bridge_port)

    print("[*] Starting Offline Kiosk...")
    server = build_server(create_app(coordinator), port=settings.kiosk_port)

    try:
        await server.serve()
    finally:
        print("\n[!] Shutting down...")
        ws_server.close()
        await ws_server.wait_closed()
        await coordinator.stop()


def main():
    print("=== POS Offline Client ===")
    settings = load_settings()

    print(f"[*] Server: {settings.server_url}")
    print(f"[*] Assets: {settings.asset_origin} (cache generation {settings.cache_generation})")
    print(f"[*] Database: {settings.db_path}")

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        print("\n[!] Stopped.")


if __name__ == "__main__":
    main()
