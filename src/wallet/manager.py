"""
Wallet Manager - Generate, load and eject wallets.

Ties the crypto codec, backup store, number index and session cache
together. A load walks an explicit sequence of states:

    RESOLVING_IDENTIFIER -> CACHE_LOOKUP -> DONE                      (hit)
    RESOLVING_IDENTIFIER -> CACHE_LOOKUP -> STORE_LOOKUP -> DECRYPT
                         -> CACHE_POPULATE -> DONE                    (miss)

and any step may end in FAILED. Cache hits never re-check the password.
Operations on one address are serialized; different addresses proceed
concurrently.
"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, TypeVar

from . import crypto
from .cache import SessionCache
from .crypto import KdfParams, WalletRecord
from .errors import (
    AlreadyAssignedError,
    BackupIOError,
    BackupNotFoundError,
    CorruptBackupError,
    PasswordRequiredError,
    WalletError,
)
from .index import WalletIndex, WalletInfo
from .keyring import DEFAULT_WORD_COUNT, Keyring, verify_signature
from .store import BackupStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Bounded retry for filesystem failures (never for decryption failures)
MAX_IO_RETRIES = 3
RETRY_DELAY = 0.5  # seconds, doubled after each attempt


# ============================================
# Load State Machine
# ============================================

class LoadState(Enum):
    RESOLVING_IDENTIFIER = "resolving_identifier"
    CACHE_LOOKUP = "cache_lookup"
    STORE_LOOKUP = "store_lookup"
    DECRYPT = "decrypt"
    CACHE_POPULATE = "cache_populate"
    DONE = "done"
    FAILED = "failed"


# Allowed transitions; FAILED is reachable from every non-terminal state
_TRANSITIONS = {
    LoadState.RESOLVING_IDENTIFIER: {LoadState.CACHE_LOOKUP},
    LoadState.CACHE_LOOKUP: {LoadState.DONE, LoadState.STORE_LOOKUP},
    LoadState.STORE_LOOKUP: {LoadState.DECRYPT},
    LoadState.DECRYPT: {LoadState.CACHE_POPULATE},
    LoadState.CACHE_POPULATE: {LoadState.DONE},
    LoadState.DONE: set(),
    LoadState.FAILED: set(),
}


@dataclass
class LoadAttempt:
    """Record of one load's path through the state machine."""
    identifier: str
    state: LoadState = LoadState.RESOLVING_IDENTIFIER
    history: list[LoadState] = field(default_factory=lambda: [LoadState.RESOLVING_IDENTIFIER])
    error: Optional[WalletError] = None

    def advance(self, state: LoadState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid load transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        logger.debug(f"Load {self.identifier}: {state.value}")

    def fail(self, error: WalletError) -> None:
        if self.state in (LoadState.DONE, LoadState.FAILED):
            return
        self.state = LoadState.FAILED
        self.history.append(LoadState.FAILED)
        self.error = error

    @property
    def cache_hit(self) -> bool:
        return self.state == LoadState.DONE and LoadState.DECRYPT not in self.history


# ============================================
# Results
# ============================================

@dataclass
class WalletHandle:
    """A loaded wallet: address, wallet number and decrypted keyring."""
    address: str
    keyring: Keyring
    wallet_number: Optional[int] = None

    def get_address(self) -> str:
        return self.address

    def get_wallet_number(self) -> Optional[int]:
        return self.wallet_number

    def sign(self, message: str | bytes) -> bytes:
        return self.keyring.sign(message)


@dataclass
class NewWallet:
    """Result of generating or importing a wallet."""
    keyring: Keyring
    address: str
    wallet_number: int

    @property
    def handle(self) -> WalletHandle:
        return WalletHandle(self.address, self.keyring, self.wallet_number)


@dataclass
class WalletData:
    """Cache view of a wallet. decrypted_keyring is None unless it is cached."""
    address: str
    wallet_number: Optional[int]
    decrypted_keyring: Optional[Keyring] = None


@dataclass
class SignedMessage:
    address: str
    message: str
    signature: str      # 0x-prefixed hex
    wallet_number: Optional[int] = None


class _AddressLocks:
    """One re-entrant lock per address, dropped once nothing holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # address -> [RLock, users]

    @contextmanager
    def hold(self, address: str):
        with self._guard:
            entry = self._locks.setdefault(address, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[address]

    def __len__(self) -> int:
        return len(self._locks)


# ============================================
# Wallet Manager
# ============================================

class WalletManager:
    """
    Credential resolver for password-encrypted, file-backed wallets.

    Usage:
        manager = WalletManager(wallet_dir)

        new = manager.generate_new("pw1")                 # wallet #1
        handle = manager.load_wallet_by_number(1)         # cache hit, no password
        manager.clear_wallet_from_cache(new.address)
        handle = manager.load_wallet_by_number(1, "pw1")  # decrypts the backup
    """

    def __init__(self, wallet_dir: Optional[str | Path] = None,
                 store: Optional[BackupStore] = None,
                 index: Optional[WalletIndex] = None,
                 cache: Optional[SessionCache] = None,
                 kdf_params: Optional[KdfParams] = None,
                 max_io_retries: int = MAX_IO_RETRIES,
                 retry_delay: float = RETRY_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize wallet manager.

        Args:
            wallet_dir: Backup directory (default: utils.get_wallet_dir())
            store: Backup store (default: BackupStore(wallet_dir))
            index: Number index (default: persisted next to the backups)
            cache: Session cache (default: unbounded, no expiry)
            kdf_params: Argon2id parameters for new backups
            max_io_retries: Attempts for store operations on BackupIOError
            retry_delay: Initial delay between attempts, doubled each time
        """
        self.store = store if store is not None else BackupStore(wallet_dir)
        if index is None:
            index = WalletIndex(getattr(self.store, "backup_dir", None))
        self.index = index
        self.cache = cache if cache is not None else SessionCache()
        self.kdf_params = kdf_params or crypto.DEFAULT_KDF_PARAMS
        self.max_io_retries = max(1, max_io_retries)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._locks = _AddressLocks()

        if not self.index.loaded and len(self.index) == 0:
            addresses = self._io(self.store.list_addresses)
            if addresses:
                logger.warning("Wallet index missing, rebuilding from backup files")
                self.index.rebuild(addresses)

    # ============================================
    # Helpers
    # ============================================

    def _io(self, operation: Callable[..., T], *args) -> T:
        """Run a store operation, retrying BackupIOError with backoff."""
        delay = self.retry_delay
        for attempt in range(1, self.max_io_retries + 1):
            try:
                return operation(*args)
            except BackupIOError as e:
                if attempt == self.max_io_retries:
                    logger.error(f"Store operation failed after {attempt} attempt(s): {e}")
                    raise
                logger.warning(f"Store operation failed (attempt {attempt}), retrying: {e}")
                self._sleep(delay)
                delay *= 2

    def _rollback_write(self, address: str) -> None:
        try:
            self._io(self.store.delete, address)
        except BackupIOError as e:
            logger.error(f"Rollback failed: could not delete backup for {address}: {e}")

    # ============================================
    # Generation
    # ============================================

    def generate_new(self, password: str, word_count: int = DEFAULT_WORD_COUNT,
                     **keyring_options) -> NewWallet:
        """
        Create, encrypt, persist, number and cache a fresh wallet.

        keyring_options are passed to Keyring (ss58_format, keypair_password,
        hard_derivation, ...). The mnemonic is available on the returned keyring.
        """
        keyring = Keyring.generate(word_count, **keyring_options)
        return self._persist_new(keyring, password)

    def import_mnemonic(self, mnemonic: str, password: str, **keyring_options) -> NewWallet:
        """
        Import an existing mnemonic as a new numbered wallet.

        Raises:
            AlreadyAssignedError: If the derived address is already stored
        """
        keyring = Keyring(mnemonic, **keyring_options)
        return self._persist_new(keyring, password)

    def import_backup(self, source: dict | str | bytes | Path, password: str) -> NewWallet:
        """
        Import an encrypted backup made elsewhere as a new numbered wallet.

        source is a record dict, its JSON text, or the Path of a backup file.
        The decrypted keyring is re-encrypted under the same password with
        this manager's KDF parameters before it is stored.

        Raises:
            PasswordRequiredError: If password is empty
            BackupNotFoundError: If a source path does not exist
            CorruptBackupError: If the source is not a valid wallet record
            WrongPasswordOrCorruptError: If decryption fails
            AlreadyAssignedError: If the wallet is already stored
        """
        if not password:
            raise PasswordRequiredError("A password is required to import a wallet backup")
        record = WalletRecord.from_dict(self._parse_backup_source(source))
        keyring = crypto.decrypt(record, password)
        logger.info(f"Decrypted imported backup for {record.address}")
        return self._persist_new(keyring, password)

    @staticmethod
    def _parse_backup_source(source: dict | str | bytes | Path) -> dict:
        if isinstance(source, dict):
            return source
        if isinstance(source, Path):
            try:
                source = source.read_bytes()
            except FileNotFoundError as e:
                raise BackupNotFoundError(f"Wallet backup file does not exist: {source}") from e
            except OSError as e:
                raise BackupIOError(f"Failed to read wallet backup {source}: {e}") from e
        try:
            return json.loads(source)
        except (TypeError, ValueError, RecursionError) as e:
            raise CorruptBackupError("Imported wallet backup is not valid JSON") from e

    def _persist_new(self, keyring: Keyring, password: str) -> NewWallet:
        """
        Persist, assign a number and cache, all or nothing.

        A failure after the backup is written deletes it again, so no backup
        is ever left without a number (or a number without a backup).
        """
        if not password:
            raise PasswordRequiredError("A password is required to create a wallet")

        record = crypto.encrypt(keyring, password, self.kdf_params)
        address = record.address

        with self._locks.hold(address):
            if address in self.index or self._io(self.store.exists, address):
                raise AlreadyAssignedError(f"Wallet {address} already exists")

            self._io(self.store.write, address, record)
            try:
                number = self.index.assign_next(address)
            except Exception:
                self._rollback_write(address)
                raise
            try:
                self.cache.put(address, keyring, number)
            except Exception:
                try:
                    self.index.release(address)
                except BackupIOError as e:
                    logger.error(f"Rollback failed: could not release wallet #{number} ({address}): {e}")
                finally:
                    self._rollback_write(address)
                raise

        logger.info(f"Created wallet #{number} ({address})")
        return NewWallet(keyring=keyring, address=address, wallet_number=number)

    # ============================================
    # Loading
    # ============================================

    def load_wallet_by_number(self, number: int, password: Optional[str] = None,
                              attempt: Optional[LoadAttempt] = None) -> WalletHandle:
        """
        Load wallet #number from the cache, or decrypt its backup.

        Raises:
            NumberNotFoundError: If the number is unassigned
            PasswordRequiredError: On a cache miss without a password
            WrongPasswordOrCorruptError: If decryption fails
        """
        attempt = attempt or LoadAttempt(identifier=f"#{number}")
        try:
            address = self.index.resolve_number(number)
        except WalletError as e:
            attempt.fail(e)
            raise
        return self._load(address, password, attempt)

    def load_wallet_by_address(self, address: str, password: Optional[str] = None,
                               attempt: Optional[LoadAttempt] = None) -> WalletHandle:
        """Load a wallet by address, from the cache or its backup."""
        attempt = attempt or LoadAttempt(identifier=address)
        return self._load(address, password, attempt)

    def load_wallet(self, number: Optional[int] = None, address: Optional[str] = None,
                    password: Optional[str] = None) -> WalletHandle:
        """Load by number or address. The number wins when both are given."""
        if number is not None:
            return self.load_wallet_by_number(number, password)
        if address:
            return self.load_wallet_by_address(address, password)
        raise ValueError("A wallet number or address is required")

    def _load(self, address: str, password: Optional[str], attempt: LoadAttempt) -> WalletHandle:
        try:
            with self._locks.hold(address):
                attempt.advance(LoadState.CACHE_LOOKUP)
                entry = self.cache.get(address)
                if entry is not None:
                    attempt.advance(LoadState.DONE)
                    number = entry.wallet_number or self.index.number_for(address)
                    return WalletHandle(address, entry.keyring, number)

                attempt.advance(LoadState.STORE_LOOKUP)
                if not self._io(self.store.exists, address):
                    raise BackupNotFoundError(f"No stored data found for wallet address {address}")
                if not password:
                    raise PasswordRequiredError(
                        f"Wallet {attempt.identifier} is not unlocked; a password is required"
                    )
                record = self._io(self.store.read, address)

                attempt.advance(LoadState.DECRYPT)
                keyring = crypto.decrypt(record, password)

                attempt.advance(LoadState.CACHE_POPULATE)
                number = self.index.number_for(address)
                self.cache.put(address, keyring, number)
                attempt.advance(LoadState.DONE)
        except WalletError as e:
            attempt.fail(e)
            logger.info(f"Load of wallet {attempt.identifier} failed: {type(e).__name__}")
            raise

        logger.info(f"Unlocked wallet {attempt.identifier} from backup")
        return WalletHandle(address, keyring, number)

    # ============================================
    # Eject
    # ============================================

    def eject_wallet_from_file(self, address: str, password: str) -> dict:
        """
        Decrypt the backup file and reveal its mnemonic and options.

        Always reads the file, even if the wallet is cached, and always
        requires the password. The cached session is cleared afterwards.
        """
        if not password:
            raise PasswordRequiredError("A password is required to eject a wallet")

        with self._locks.hold(address):
            record = self._io(self.store.read, address)
            keyring = crypto.decrypt(record, password)
            data = keyring.to_backup_dict()
            keyring.lock()
            self.cache.invalidate(address)

        logger.info(f"Wallet {address} ejected from backup file")
        return data

    # ============================================
    # Cache
    # ============================================

    def store_wallet_in_cache(self, address: str, handle: WalletHandle) -> None:
        """Put a loaded wallet into the session cache."""
        with self._locks.hold(address):
            number = handle.wallet_number or self.index.number_for(address)
            self.cache.put(address, handle.keyring, number)

    def clear_wallet_from_cache(self, address: str) -> bool:
        """Drop a cached session. The backup file is untouched."""
        with self._locks.hold(address):
            return self.cache.invalidate(address)

    def clear_all_from_cache(self) -> None:
        self.cache.clear()

    def get_wallet_data(self, handle: WalletHandle, number: Optional[int] = None) -> Optional[WalletData]:
        """
        Look up a wallet's cached data, by number if given, else the handle's address.

        Returns None if the number is unassigned. Never decrypts.
        """
        if number is not None:
            try:
                address = self.index.resolve_number(number)
            except WalletError:
                return None
        else:
            address = handle.get_address()

        entry = self.cache.get(address)
        return WalletData(
            address=address,
            wallet_number=self.index.number_for(address),
            decrypted_keyring=entry.keyring if entry else None,
        )

    # ============================================
    # Signing
    # ============================================

    def sign_message(self, message: str, number: Optional[int] = None,
                     address: Optional[str] = None,
                     password: Optional[str] = None) -> SignedMessage:
        """Sign a message with a wallet picked by number (preferred) or address."""
        if not message:
            raise ValueError("Cannot sign an empty message")
        handle = self.load_wallet(number=number, address=address, password=password)
        signature = handle.sign(message)
        return SignedMessage(
            address=handle.address,
            message=message,
            signature="0x" + signature.hex(),
            wallet_number=handle.wallet_number,
        )

    def verify_signature(self, message: str, signature: str | bytes,
                         number: Optional[int] = None,
                         address: Optional[str] = None) -> bool:
        """Verify a signature against a wallet's public address. Needs no password."""
        if number is not None:
            address = self.index.resolve_number(number)
        if not address:
            raise ValueError("A wallet number or address is required")
        return verify_signature(message, signature, address)

    # ============================================
    # Maintenance
    # ============================================

    def list_wallets(self) -> list[WalletInfo]:
        """All numbered wallets in number order."""
        return self.index.get_wallets()

    def rebuild_index(self) -> list[WalletInfo]:
        """Renumber wallets 1..N from the backup files' creation order."""
        return self.index.rebuild(self._io(self.store.list_addresses))

    def remove_wallet(self, address: str) -> None:
        """Delete a wallet's backup, retire its number and drop its session."""
        with self._locks.hold(address):
            self._io(self.store.delete, address)
            self.index.remove(address)
            self.cache.invalidate(address)
        logger.info(f"Removed wallet {address}")
