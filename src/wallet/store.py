"""
Backup Store - One encrypted JSON file per wallet address.

Files are named <address>_wallet_backup.json inside the backup directory.
Writes go to a temp file in the same directory and are moved into place,
so a backup is always either the old or the new complete content.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from scalecodec.utils.ss58 import is_valid_ss58_address

from utils import get_wallet_dir

from .crypto import WalletRecord
from .errors import BackupIOError, BackupNotFoundError, CorruptBackupError

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = "_wallet_backup.json"

# Secure file permissions (Unix only)
SECURE_FILE_MODE = 0o600  # Owner read/write only


def set_secure_permissions(filepath: Path) -> None:
    """
    Set restrictive file permissions on Unix systems.

    No-op on Windows (NTFS uses ACLs, not Unix permissions).
    """
    if os.name == 'posix':
        try:
            os.chmod(filepath, SECURE_FILE_MODE)
        except OSError:
            # Best effort - don't fail save operation if chmod fails
            pass


def is_valid_address(address: str) -> bool:
    """Check that an address is well-formed SS58 (and therefore filename-safe)."""
    if not isinstance(address, str) or not address:
        return False
    try:
        return is_valid_ss58_address(address)
    except (ValueError, TypeError):
        return False


class BackupStore:
    """Filesystem store of encrypted wallet records."""

    def __init__(self, backup_dir: Optional[str | Path] = None):
        """
        Initialize the store.

        Args:
            backup_dir: Directory holding backup files (default: utils.get_wallet_dir())
        """
        self.backup_dir = Path(backup_dir) if backup_dir else get_wallet_dir()

    def path_for(self, address: str) -> Path:
        """Get the backup file path for an address."""
        return self.backup_dir / f"{address}{BACKUP_SUFFIX}"

    def write(self, address: str, record: WalletRecord) -> None:
        """
        Atomically write a record.

        Raises:
            ValueError: If the address is invalid or doesn't match the record
            BackupIOError: On any filesystem failure
        """
        if not is_valid_address(address):
            raise ValueError(f"Invalid wallet address: {address!r}")
        if record.address != address:
            raise ValueError(f"Record address {record.address} does not match {address}")

        filepath = self.path_for(address)
        temp_path = None
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                dir=self.backup_dir, prefix=f".{address}.", suffix=".tmp"
            )
            temp_path = Path(temp_name)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(record.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            set_secure_permissions(temp_path)
            temp_path.replace(filepath)
            temp_path = None
        except OSError as e:
            raise BackupIOError(f"Failed to write wallet backup for {address}: {e}") from e
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

        logger.info(f"Wallet backup saved to {filepath}")

    def read(self, address: str) -> WalletRecord:
        """
        Read the record for an address.

        Raises:
            BackupNotFoundError: If no backup exists
            BackupIOError: If the file can't be read
            CorruptBackupError: If the file can't be parsed into a record
        """
        if not is_valid_address(address):
            raise BackupNotFoundError(f"No stored data found for wallet address {address}")

        filepath = self.path_for(address)
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise BackupNotFoundError(f"No stored data found for wallet address {address}") from e
        except (ValueError, RecursionError) as e:
            # Deeply nested JSON raises RecursionError
            raise CorruptBackupError(f"Wallet backup for {address} is not valid JSON") from e
        except OSError as e:
            raise BackupIOError(f"Failed to read wallet backup for {address}: {e}") from e

        record = WalletRecord.from_dict(data)
        if record.address != address:
            raise CorruptBackupError(f"Wallet backup {filepath.name} belongs to {record.address}")
        return record

    def exists(self, address: str) -> bool:
        """Check if a backup exists for an address."""
        return is_valid_address(address) and self.path_for(address).exists()

    def delete(self, address: str) -> None:
        """Delete the backup for an address. Missing files are not an error."""
        if not is_valid_address(address):
            return
        try:
            self.path_for(address).unlink(missing_ok=True)
        except OSError as e:
            raise BackupIOError(f"Failed to delete wallet backup for {address}: {e}") from e
        logger.info(f"Wallet backup deleted for {address}")

    def list_addresses(self) -> list[str]:
        """
        List all stored addresses, oldest first.

        Order is the record's creation timestamp, falling back to file mtime
        for files whose timestamp can't be read.
        """
        if not self.backup_dir.exists():
            return []

        entries = []
        try:
            for filepath in self.backup_dir.glob(f"*{BACKUP_SUFFIX}"):
                address = filepath.name[:-len(BACKUP_SUFFIX)]
                if not is_valid_address(address):
                    continue
                entries.append((self._creation_key(filepath), address))
        except OSError as e:
            raise BackupIOError(f"Failed to list wallet backups: {e}") from e

        entries.sort()
        return [address for _, address in entries]

    @staticmethod
    def _creation_key(filepath: Path) -> str:
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                created = json.load(f).get("created")
            if isinstance(created, str) and created:
                return created
        except (ValueError, RecursionError, AttributeError, OSError):
            logger.warning(f"Unreadable wallet backup {filepath.name}, ordering by mtime")
        mtime = filepath.stat().st_mtime
        return datetime.fromtimestamp(mtime, timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")
