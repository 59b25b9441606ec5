"""
Configuration for the gox proxy client.

Loads settings from environment variables with sensible defaults.
All persistent data is stored in ~/.gox-client/ unless GOX_DATA_DIR is set.
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

ENGINE_NAME = "xray.exe" if sys.platform == "win32" else "xray"


@dataclass
class Config:
    """gox configuration."""

    # Paths
    data_dir: Path = Path(os.environ.get("GOX_DATA_DIR", str(Path.home() / ".gox-client")))
    db_path: Path = None
    logs_dir: Path = None
    log_file: Path = None
    engine_binary_path: Path = None
    engine_config_path: Path = None

    # Logging
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_enabled: bool = os.environ.get("LOG_ENABLED", "true").lower() == "true"
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Server
    host: str = os.environ.get("GOX_HOST", "127.0.0.1")
    port: int = int(os.environ.get("GOX_PORT", "9901"))

    # Engine
    engine_resource: Path = Path(
        os.environ.get("ENGINE_RESOURCE", str(Path(__file__).parent / "resources" / ENGINE_NAME))
    )
    engine_log_level: str = os.environ.get("ENGINE_LOG_LEVEL", "warning")
    socks_port: int = int(os.environ.get("SOCKS_PORT", "1080"))
    http_port: int = int(os.environ.get("HTTP_PORT", "1081"))

    # Process management
    liveness_wait: float = float(os.environ.get("LIVENESS_WAIT", "2.0"))
    stop_timeout: float = float(os.environ.get("STOP_TIMEOUT", "5.0"))

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.db_path = self.data_dir / "gox.db"
        self.logs_dir = self.data_dir / "logs"
        self.log_file = self.logs_dir / "app.log"
        self.engine_binary_path = self.data_dir / ENGINE_NAME
        self.engine_config_path = self.data_dir / "xray_config.json"

        # Create directories
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
