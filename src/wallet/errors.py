"""
Wallet Errors - Typed failures for the credential subsystem.

Every failure the resolver can report maps to one class here. None of them
ever carries key material: messages name addresses and numbers only.
"""


class WalletError(Exception):
    """Base class for all wallet subsystem errors."""


class WalletNotFoundError(WalletError, LookupError):
    """No wallet exists for the requested number or address."""


class PasswordRequiredError(WalletError):
    """The wallet is not cached and no password was supplied."""


class KeyringError(WalletError, ValueError):
    """Invalid mnemonic, unsupported key type or derivation path."""


# ============================================
# Crypto Codec
# ============================================

class CryptoError(WalletError):
    """Base class for encryption/decryption failures."""


class SerializationError(CryptoError):
    """The keyring could not be serialized for encryption."""


class WrongPasswordOrCorruptError(CryptoError):
    """Authentication failed: wrong password or tampered ciphertext."""


# ============================================
# Backup Store
# ============================================

class StoreError(WalletError):
    """Base class for backup store failures."""


class BackupNotFoundError(StoreError, WalletNotFoundError):
    """No backup file exists for the address."""


class BackupIOError(StoreError):
    """Filesystem failure while reading or writing a backup."""


class CorruptBackupError(StoreError):
    """The backup file cannot be parsed into a wallet record."""


# ============================================
# Wallet Number Index
# ============================================

class WalletIndexError(WalletError):
    """Base class for wallet number index failures."""


class NumberNotFoundError(WalletIndexError, WalletNotFoundError):
    """No address is bound to the wallet number."""


class AlreadyAssignedError(WalletIndexError):
    """The address already has a wallet number."""
