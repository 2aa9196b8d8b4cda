"""
Configuration for respawn.

Loads settings from environment variables (and a .env file in the working
directory) with sensible defaults. Command-line flags override these.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Respawn configuration."""

    # Fallback runtime used when no extension mapping matches the target
    runtime: str = os.environ.get("RESPAWN_RUNTIME", "deno")

    # Watching
    debounce_ms: int = int(os.environ.get("RESPAWN_DEBOUNCE_MS", "500"))

    # Process management
    stop_timeout: float = float(os.environ.get("RESPAWN_STOP_TIMEOUT", "5"))

    # Command configuration file (optional, JSON)
    config_file: Path = Path(os.environ.get("RESPAWN_CONFIG", "respawn.json"))

    # Logging
    log_level: str = os.environ.get("RESPAWN_LOG_LEVEL", "INFO")
    log_file: Path = None
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    def __post_init__(self):
        """Resolve optional paths from the environment."""
        if self.log_file is None and os.environ.get("RESPAWN_LOG_FILE"):
            self.log_file = Path(os.environ["RESPAWN_LOG_FILE"])


config = Config()
