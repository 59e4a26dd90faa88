"""Shared fixtures for wallet tests."""

import threading

import pytest

from wallet import BackupIOError, BackupNotFoundError, KdfParams, WalletRecord
from wallet import SessionCache, WalletIndex, WalletManager

# Substrate development phrase (public, never holds funds)
DEV_PHRASE = "bottom drive obey lake curtain smoke basket hold race lonely fit walk"

# Cheapest parameters argon2 accepts
FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)


class MemoryBackupStore:
    """In-memory stand-in for BackupStore with failure injection."""

    def __init__(self):
        self._records: dict[str, dict] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self.fail_reads = 0
        self.fail_writes = 0
        self.reads = 0
        self.writes = 0

    def write(self, address, record):
        with self._lock:
            self.writes += 1
            if self.fail_writes:
                self.fail_writes -= 1
                raise BackupIOError("injected write failure")
            self._records[address] = record.to_dict()
            if address not in self._order:
                self._order.append(address)

    def read(self, address):
        with self._lock:
            self.reads += 1
            if self.fail_reads:
                self.fail_reads -= 1
                raise BackupIOError("injected read failure")
            if address not in self._records:
                raise BackupNotFoundError(f"No stored data found for wallet address {address}")
            return WalletRecord.from_dict(self._records[address])

    def exists(self, address):
        return address in self._records

    def delete(self, address):
        with self._lock:
            self._records.pop(address, None)
            if address in self._order:
                self._order.remove(address)

    def list_addresses(self):
        return list(self._order)


@pytest.fixture
def fast_kdf():
    return FAST_KDF


@pytest.fixture
def memory_store():
    return MemoryBackupStore()


@pytest.fixture
def manager(tmp_path):
    """Manager over a real backup directory."""
    return WalletManager(tmp_path / "backups", kdf_params=FAST_KDF, retry_delay=0)


@pytest.fixture
def memory_manager(memory_store):
    """Manager over the in-memory store and an in-memory index."""
    return WalletManager(
        store=memory_store,
        index=WalletIndex(),
        cache=SessionCache(),
        kdf_params=FAST_KDF,
        sleep=lambda seconds: None,
    )
