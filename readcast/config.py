"""Configuration management for Readcast."""
import os
import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Base directory points to project root (parent of this package)
BASE_DIR = Path(__file__).parent.parent


def _detect_data_dir():
    """Pick the data directory for the database, config and log.

    Priority:
    1. Explicit READCAST_DATA_DIR env var (user override)
    2. /data when it is a mounted volume (Docker)
    3. <project root>/data (local development)
    """
    if 'READCAST_DATA_DIR' in os.environ:
        return Path(os.environ['READCAST_DATA_DIR'])

    # os.path.ismount() returns True for Docker volume mounts
    if os.path.ismount('/data'):
        return Path('/data')

    return BASE_DIR / 'data'


DATA_DIR = _detect_data_dir()

DB_PATH = DATA_DIR / 'readcast.db'
CONFIG_PATH = DATA_DIR / 'config.json'
LOG_PATH = DATA_DIR / 'readcast.log'

DEFAULT_CONFIG = {
    "log_level": "INFO",
    "package_extensions": [".epub"],
    "audio_extensions": [".mp3", ".m4a", ".m4b", ".aac", ".flac", ".ogg", ".opus", ".wav", ".wma"],
    # Off by default: (mtime, ctime, size) alone decides whether to re-extract
    "extract_verify_hash": False,
    "extract_format_version": "1.1",
}


def init_config():
    """Create the data directory and a default config file if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    if not CONFIG_PATH.exists():
        with open(CONFIG_PATH, 'w') as f:
            json.dump(DEFAULT_CONFIG, f, indent=2)
        logger.info(f"Created default config at {CONFIG_PATH}")


def load_config(path=None):
    """Load configuration, overlaying the config file on the defaults."""
    config_path = Path(path) if path else CONFIG_PATH
    config = DEFAULT_CONFIG.copy()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config.update(json.load(f))
        except Exception as e:
            logger.warning(f"Error loading config: {e}")

    return config


def save_config(config, path=None):
    """Save configuration to file."""
    config_path = Path(path) if path else CONFIG_PATH
    with open(config_path, 'w') as f:
        json.dump(config, f, indent=2)


__all__ = [
    'BASE_DIR', 'DATA_DIR', 'DB_PATH', 'CONFIG_PATH', 'LOG_PATH',
    'DEFAULT_CONFIG', 'init_config', 'load_config', 'save_config',
]
