"""
Wallet package - Password-encrypted Substrate credential store.

Contains:
- Keyring: mnemonic-backed ed25519 keypair with SS58 address
- crypto: Argon2id + AES-256-GCM codec, WalletRecord
- BackupStore: one encrypted backup file per address
- WalletIndex: stable wallet numbers
- SessionCache: decrypted sessions keyed by address
- WalletManager: generate/load/eject orchestration
"""

from .errors import (
    WalletError,
    WalletNotFoundError,
    PasswordRequiredError,
    KeyringError,
    CryptoError,
    SerializationError,
    WrongPasswordOrCorruptError,
    StoreError,
    BackupNotFoundError,
    BackupIOError,
    CorruptBackupError,
    WalletIndexError,
    NumberNotFoundError,
    AlreadyAssignedError,
)
from .keyring import Keyring, generate_mnemonic, verify_signature
from .crypto import (
    KdfParams,
    WalletRecord,
    encrypt,
    decrypt,
    derive_address,
)
from .store import BackupStore, BACKUP_SUFFIX
from .index import WalletIndex, WalletInfo
from .cache import SessionCache, SessionEntry
from .manager import (
    WalletManager,
    WalletHandle,
    WalletData,
    NewWallet,
    SignedMessage,
    LoadAttempt,
    LoadState,
)

__all__ = [
    # Errors
    "WalletError",
    "WalletNotFoundError",
    "PasswordRequiredError",
    "KeyringError",
    "CryptoError",
    "SerializationError",
    "WrongPasswordOrCorruptError",
    "StoreError",
    "BackupNotFoundError",
    "BackupIOError",
    "CorruptBackupError",
    "WalletIndexError",
    "NumberNotFoundError",
    "AlreadyAssignedError",
    # Keyring
    "Keyring",
    "generate_mnemonic",
    "verify_signature",
    # Crypto
    "KdfParams",
    "WalletRecord",
    "encrypt",
    "decrypt",
    "derive_address",
    # Storage
    "BackupStore",
    "BACKUP_SUFFIX",
    "WalletIndex",
    "WalletInfo",
    # Cache
    "SessionCache",
    "SessionEntry",
    # Manager
    "WalletManager",
    "WalletHandle",
    "WalletData",
    "NewWallet",
    "SignedMessage",
    "LoadAttempt",
    "LoadState",
]
