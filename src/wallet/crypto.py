"""
Wallet Crypto - Password encryption of keyrings.

Industry-standard security:
- Argon2id key derivation (memory-hard)
- AES-256-GCM authenticated encryption
- Wallet address bound as associated data

Wrong passwords and tampered ciphertexts fail with the same error.
"""

import json
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional

# Cryptography
from argon2.exceptions import HashingError
from argon2.low_level import hash_secret_raw, Type
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# Substrate
from scalecodec.utils.ss58 import ss58_encode

from .errors import (
    CorruptBackupError,
    KeyringError,
    PasswordRequiredError,
    SerializationError,
    WrongPasswordOrCorruptError,
)
from .keyring import Keyring


# ============================================
# Security Constants
# ============================================

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits for AES-256
SALT_SIZE = 16

# Upper bounds accepted from a backup file
MAX_TIME_COST = 64
MAX_MEMORY_COST = 4 * 1024 * 1024  # 4 GB
MAX_PARALLELISM = 64

# AES-GCM constants
AES_IV_SIZE = 12  # 96 bits (recommended for GCM)
AES_TAG_SIZE = 16

# Persisted record format
RECORD_VERSION = 1
KDF_ALGORITHM = "argon2id"
CIPHER_ALGORITHM = "aes-256-gcm"


# ============================================
# Data Classes
# ============================================

@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters, stored with every record."""
    time_cost: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST  # KiB
    parallelism: int = ARGON2_PARALLELISM

    def validate(self) -> None:
        """Reject parameters argon2 cannot use or that exceed sane bounds."""
        if not 1 <= self.parallelism <= MAX_PARALLELISM:
            raise ValueError(f"parallelism out of range: {self.parallelism}")
        if not 1 <= self.time_cost <= MAX_TIME_COST:
            raise ValueError(f"time_cost out of range: {self.time_cost}")
        if not 8 * self.parallelism <= self.memory_cost <= MAX_MEMORY_COST:
            raise ValueError(f"memory_cost out of range: {self.memory_cost}")


DEFAULT_KDF_PARAMS = KdfParams()


@dataclass
class WalletRecord:
    """Encrypted, persisted form of one keyring."""
    address: str
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    tag: bytes
    kdf: KdfParams
    created: str                     # ISO timestamp
    version: int = RECORD_VERSION

    def to_dict(self) -> dict:
        """Versioned JSON-safe form; bytes are hex encoded."""
        kdf = {"algorithm": KDF_ALGORITHM, "salt": self.salt.hex()}
        kdf.update(asdict(self.kdf))
        return {
            "version": self.version,
            "address": self.address,
            "created": self.created,
            "kdf": kdf,
            "cipher": CIPHER_ALGORITHM,
            "nonce": self.nonce.hex(),
            "ciphertext": self.ciphertext.hex(),
            "tag": self.tag.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WalletRecord":
        """
        Parse a persisted record.

        Raises:
            CorruptBackupError: If the structure, version or encoding is invalid
        """
        if not isinstance(data, dict):
            raise CorruptBackupError("Wallet backup is not a JSON object")
        if data.get("version") != RECORD_VERSION:
            raise CorruptBackupError(f"Unsupported wallet backup version: {data.get('version')}")

        try:
            kdf = data["kdf"]
            if kdf["algorithm"] != KDF_ALGORITHM or data["cipher"] != CIPHER_ALGORITHM:
                raise CorruptBackupError("Unsupported wallet backup algorithm")
            params = KdfParams(
                time_cost=int(kdf["time_cost"]),
                memory_cost=int(kdf["memory_cost"]),
                parallelism=int(kdf["parallelism"]),
            )
            params.validate()
            record = cls(
                address=str(data["address"]),
                salt=bytes.fromhex(kdf["salt"]),
                nonce=bytes.fromhex(data["nonce"]),
                ciphertext=bytes.fromhex(data["ciphertext"]),
                tag=bytes.fromhex(data["tag"]),
                kdf=params,
                created=str(data.get("created", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptBackupError(f"Malformed wallet backup: {e}") from e

        if len(record.nonce) != AES_IV_SIZE or len(record.tag) != AES_TAG_SIZE or not record.salt:
            raise CorruptBackupError("Malformed wallet backup: bad nonce, tag or salt size")
        return record


# ============================================
# Key Derivation
# ============================================

def derive_key(password: str, salt: bytes, params: KdfParams = DEFAULT_KDF_PARAMS) -> bytes:
    """
    Derive an encryption key from password using Argon2id.

    Argon2id is memory-hard, making brute-force attacks expensive.
    With default parameters, each password guess requires ~64MB RAM.
    """
    return hash_secret_raw(
        secret=password.encode('utf-8'),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID
    )


def _associated_data(address: str, version: int) -> bytes:
    """Canonical JSON bound to the ciphertext so records can't be re-addressed."""
    ad = {"address": address, "version": version}
    return json.dumps(ad, separators=(",", ":"), sort_keys=True).encode('utf-8')


# ============================================
# Encryption
# ============================================

def encrypt(keyring: Keyring, password: str,
            params: Optional[KdfParams] = None) -> WalletRecord:
    """
    Encrypt a keyring with a password.

    Raises:
        PasswordRequiredError: If password is empty
        SerializationError: If the keyring cannot be serialized (e.g. locked)
    """
    if not password:
        raise PasswordRequiredError("A password is required to encrypt a wallet")
    params = params or DEFAULT_KDF_PARAMS

    try:
        plaintext = json.dumps(keyring.to_backup_dict(), separators=(",", ":")).encode('utf-8')
    except (KeyringError, TypeError, ValueError) as e:
        raise SerializationError(f"Failed to serialize keyring: {e}") from e

    address = derive_address(keyring)
    salt = secrets.token_bytes(SALT_SIZE)
    key = derive_key(password, salt, params)
    iv = secrets.token_bytes(AES_IV_SIZE)

    aesgcm = AESGCM(key)
    ciphertext_and_tag = aesgcm.encrypt(iv, plaintext, _associated_data(address, RECORD_VERSION))
    del plaintext

    return WalletRecord(
        address=address,
        salt=salt,
        nonce=iv,
        ciphertext=ciphertext_and_tag[:-AES_TAG_SIZE],
        tag=ciphertext_and_tag[-AES_TAG_SIZE:],
        kdf=params,
        created=datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z"),
    )


def decrypt(record: WalletRecord, password: str) -> Keyring:
    """
    Decrypt a wallet record with a password.

    Raises:
        WrongPasswordOrCorruptError: If password is wrong or data is tampered
        CorruptBackupError: If the authenticated payload is unusable or its
            address does not match the record
    """
    try:
        key = derive_key(password or "", record.salt, record.kdf)
    except HashingError as e:
        raise CorruptBackupError(f"Invalid key derivation parameters: {e}") from e

    aesgcm = AESGCM(key)
    try:
        plaintext = aesgcm.decrypt(
            record.nonce,
            record.ciphertext + record.tag,
            _associated_data(record.address, record.version),
        )
    except InvalidTag as e:
        raise WrongPasswordOrCorruptError("Wrong password or corrupted wallet backup") from e

    # Parse errors carry the plaintext; never chain them.
    try:
        keyring = Keyring.from_backup_dict(json.loads(plaintext.decode('utf-8')))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError, KeyringError):
        raise CorruptBackupError("Decrypted wallet payload is malformed") from None
    finally:
        del plaintext

    if derive_address(keyring) != record.address:
        keyring.lock()
        raise CorruptBackupError(f"Wallet backup address mismatch for {record.address}")
    return keyring


def derive_address(keyring: Keyring) -> str:
    """SS58 address of a keyring's public key."""
    return ss58_encode(keyring.public_key, ss58_format=keyring.ss58_format)
