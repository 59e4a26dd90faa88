"""
Wallet Index - Stable wallet numbers.

Maps a monotonically increasing number (#1, #2, ...) to each wallet address.
Numbers are never reused: the next number is persisted separately from the
bindings, so removing a wallet leaves a gap rather than freeing its number.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .errors import AlreadyAssignedError, BackupIOError, NumberNotFoundError
from .store import set_secure_permissions

logger = logging.getLogger(__name__)

INDEX_FILENAME = "wallets.json"
INDEX_VERSION = 1


@dataclass
class WalletInfo:
    """Binding between a wallet number and an address."""
    number: int
    address: str
    assigned_at: str     # ISO timestamp

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "WalletInfo":
        return cls(number=int(data["number"]), address=str(data["address"]),
                   assigned_at=str(data.get("assigned_at", "")))

    def display_label(self) -> str:
        """Format for display: #3 - 5Grw..."""
        return f"#{self.number} - {self.address}"


class WalletIndex:
    """
    Number <-> address index, optionally persisted as wallets.json.

    Pass wallet_dir=None for a purely in-memory index.
    """

    def __init__(self, wallet_dir: Optional[Path] = None):
        self.wallet_dir = Path(wallet_dir) if wallet_dir else None
        self.index_path = self.wallet_dir / INDEX_FILENAME if self.wallet_dir else None
        self._lock = threading.RLock()
        self._by_number: dict[int, WalletInfo] = {}
        self._by_address: dict[str, WalletInfo] = {}
        self._next_number = 1
        self.loaded = self._load()

    # ============================================
    # Persistence
    # ============================================

    def _load(self) -> bool:
        """Load the index from disk. Returns False if missing or unreadable."""
        if self.index_path is None or not self.index_path.exists():
            return False
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            wallets = [WalletInfo.from_dict(w) for w in data["wallets"]]
            next_number = int(data["next_number"])
        except (KeyError, TypeError, ValueError, RecursionError, OSError) as e:
            logger.warning(f"Failed to load wallet index {self.index_path}: {e}")
            return False

        for info in wallets:
            self._bind(info)
        self._next_number = max([next_number] + [w.number + 1 for w in wallets])
        return True

    def _save(self) -> None:
        """Atomically save the index to disk."""
        if self.index_path is None:
            return
        data = {
            "version": INDEX_VERSION,
            "next_number": self._next_number,
            "wallets": [w.to_dict() for w in self.get_wallets()],
        }
        temp_path = None
        try:
            self.wallet_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=self.wallet_dir, prefix=".wallets.", suffix=".tmp")
            temp_path = Path(temp_name)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            set_secure_permissions(temp_path)
            temp_path.replace(self.index_path)
            temp_path = None
        except OSError as e:
            raise BackupIOError(f"Failed to save wallet index: {e}") from e
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

    def _bind(self, info: WalletInfo) -> None:
        self._by_number[info.number] = info
        self._by_address[info.address] = info

    def _unbind(self, info: WalletInfo) -> None:
        self._by_number.pop(info.number, None)
        self._by_address.pop(info.address, None)

    # ============================================
    # Operations
    # ============================================

    @property
    def next_number(self) -> int:
        """The number the next assignment will receive."""
        return self._next_number

    def assign_next(self, address: str) -> int:
        """
        Bind the next unused number to an address.

        Raises:
            AlreadyAssignedError: If the address already has a number
            BackupIOError: If the index can't be saved (nothing is assigned)
        """
        with self._lock:
            if address in self._by_address:
                existing = self._by_address[address].number
                raise AlreadyAssignedError(f"Address {address} is already wallet #{existing}")

            info = WalletInfo(
                number=self._next_number,
                address=address,
                assigned_at=datetime.now(timezone.utc).isoformat(),
            )
            self._bind(info)
            self._next_number += 1
            try:
                self._save()
            except BackupIOError:
                self._unbind(info)
                self._next_number -= 1
                raise
            logger.info(f"Assigned wallet #{info.number} to {address}")
            return info.number

    def resolve_number(self, number: int) -> str:
        """
        Get the address bound to a number.

        Raises:
            NumberNotFoundError: If the number is unassigned
        """
        with self._lock:
            info = self._by_number.get(number)
        if info is None:
            raise NumberNotFoundError(f"No wallet found with number {number}")
        return info.address

    def number_for(self, address: str) -> Optional[int]:
        """Get the number bound to an address, or None."""
        with self._lock:
            info = self._by_address.get(address)
        return info.number if info else None

    def remove(self, address: str) -> Optional[WalletInfo]:
        """Unbind an address. Its number is retired, never reassigned."""
        with self._lock:
            info = self._by_address.get(address)
            if info is None:
                return None
            self._unbind(info)
            try:
                self._save()
            except BackupIOError:
                self._bind(info)
                raise
            return info

    def release(self, address: str) -> None:
        """
        Undo an assignment that never became visible (generation rollback).

        Unlike remove(), the number is handed back if it was the last one issued.
        """
        with self._lock:
            info = self._by_address.get(address)
            if info is None:
                return
            previous_next = self._next_number
            self._unbind(info)
            if info.number == self._next_number - 1:
                self._next_number -= 1
            try:
                self._save()
            except BackupIOError:
                self._bind(info)
                self._next_number = previous_next
                raise

    def rebuild(self, addresses: Iterable[str]) -> list[WalletInfo]:
        """
        Rebuild from scratch, numbering addresses 1..N in the given order.

        Used to recover a lost index from the backup store's creation order.
        """
        with self._lock:
            self._by_number.clear()
            self._by_address.clear()
            self._next_number = 1
            now = datetime.now(timezone.utc).isoformat()
            for address in addresses:
                if address in self._by_address:
                    continue
                self._bind(WalletInfo(number=self._next_number, address=address, assigned_at=now))
                self._next_number += 1
            self._save()
            logger.info(f"Rebuilt wallet index with {len(self._by_number)} wallet(s)")
            return self.get_wallets()

    def get_wallets(self) -> list[WalletInfo]:
        """All bindings in number order."""
        with self._lock:
            return [self._by_number[n] for n in sorted(self._by_number)]

    def __len__(self) -> int:
        return len(self._by_number)

    def __contains__(self, address: str) -> bool:
        return address in self._by_address
