"""
config.py - Runtime configuration for the POS offline client.

Values come from config/pos.env (KEY=VALUE lines) and the process
environment. See config/pos.env.example for the full list.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = BASE_DIR / "config"
ENV_PATH = CONFIG_DIR / "pos.env"
DATA_DIR = BASE_DIR / "data"


def load_env_file(path):
    """Simple replacement for load_dotenv to avoid external dependency."""
    if not os.path.exists(path):
        return
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if '=' in line and not line.startswith('#'):
                key, val = line.split('=', 1)
                os.environ.setdefault(key.strip(), val.strip())


@dataclass
class Settings:
    server_url: str = "http://localhost:8000/api/v1"
    api_token: str = ""
    asset_origin: str = "http://localhost:8000"
    data_dir: Path = DATA_DIR
    cache_generation: int = 1
    low_stock_threshold: int = 5
    low_stock_interval: float = 300.0
    heartbeat_interval: float = 30.0
    kiosk_port: int = 8001
    bridge_port: int = 8002

    @property
    def db_path(self) -> Path:
        return self.data_dir / "local.db"


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """Load settings from the env file (if present) and the environment."""
    load_env_file(env_path or ENV_PATH)
    defaults = Settings()

    return Settings(
        server_url=os.getenv("POS_SERVER_URL", defaults.server_url),
        api_token=os.getenv("POS_API_TOKEN", defaults.api_token),
        asset_origin=os.getenv("POS_ASSET_ORIGIN", defaults.asset_origin),
        data_dir=Path(os.getenv("POS_DATA_DIR", str(defaults.data_dir))),
        cache_generation=int(os.getenv("POS_CACHE_GENERATION", defaults.cache_generation)),
        low_stock_threshold=int(os.getenv("POS_LOW_STOCK_THRESHOLD", defaults.low_stock_threshold)),
        low_stock_interval=float(os.getenv("POS_LOW_STOCK_INTERVAL", defaults.low_stock_interval)),
        heartbeat_interval=float(os.getenv("POS_HEARTBEAT_INTERVAL", defaults.heartbeat_interval)),
        kiosk_port=int(os.getenv("POS_KIOSK_PORT", defaults.kiosk_port)),
        bridge_port=int(os.getenv("POS_BRIDGE_PORT", defaults.bridge_port)),
    )
