"""
Shared utility functions.

Contains path helpers used across packages. The backup directory can be
overridden with the POLKADOT_WALLET_BACKUP_DIR environment variable.
"""

import os
from pathlib import Path

# Environment variable overriding the wallet backup directory
BACKUP_DIR_ENV = "POLKADOT_WALLET_BACKUP_DIR"

# Default directory name, created under the current working directory
WALLET_BACKUP_DIRNAME = "polkadot_wallet_backups"


def get_app_dir() -> Path:
    """Get the application data directory (the current working directory)."""
    return Path.cwd()


def get_wallet_dir() -> Path:
    """Get the wallet backup directory (env override, else ./polkadot_wallet_backups)."""
    override = os.environ.get(BACKUP_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return get_app_dir() / WALLET_BACKUP_DIRNAME


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir
