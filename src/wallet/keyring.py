"""
Keyring - Mnemonic-backed Substrate keypairs.

Derivation follows the Substrate conventions so addresses match other
Polkadot tooling:
- Mini-secret from BIP-39 entropy (not the BIP-39 seed), PBKDF2-HMAC-SHA512
- Optional SURI parts: ///password, //hard and /soft junctions
- ed25519 or sr25519 keypair, SS58-encoded address

ed25519 pairs are derived here (hard junctions only, as ed25519 has no
soft derivation). sr25519 pairs, including soft junctions, come from the
schnorrkel bindings used by substrate-interface.
"""

import hashlib
import re
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from mnemonic import Mnemonic
from scalecodec.utils.ss58 import ss58_decode, ss58_encode
import sr25519
from substrateinterface import Keypair, KeypairType

from networks import (
    DEFAULT_KEYRING_TYPE,
    DEFAULT_SS58_FORMAT,
    SUPPORTED_KEYRING_TYPES,
    NetworkConfig,
    get_network,
    resolve_ss58_format,
)

from .errors import KeyringError


# ============================================
# Constants
# ============================================

# Word count -> entropy bits
MNEMONIC_STRENGTHS = {12: 128, 15: 160, 18: 192, 21: 224, 24: 256}
DEFAULT_WORD_COUNT = 24

PBKDF2_ROUNDS = 2048
MINI_SECRET_SIZE = 32
JUNCTION_ID_LEN = 32

# SCALE-encoded "Ed25519HDKD" (compact length prefix + bytes)
ED25519_HDKD = bytes([len(b"Ed25519HDKD") << 2]) + b"Ed25519HDKD"

# "//hard" or "/soft" junctions
JUNCTION_RE = re.compile(r"(//?)([^/]+)")

_mnemo = Mnemonic("english")


# ============================================
# Derivation Helpers
# ============================================

def _scale_compact(n: int) -> bytes:
    """SCALE compact encoding for a length prefix."""
    if n < 1 << 6:
        return bytes([n << 2])
    if n < 1 << 14:
        return ((n << 2) | 0b01).to_bytes(2, "little")
    if n < 1 << 30:
        return ((n << 2) | 0b10).to_bytes(4, "little")
    raise KeyringError("Derivation junction is too long")


def _junction_chain_code(value: str) -> bytes:
    """
    Chain code for a junction.

    Numeric junctions are u64 little-endian, everything else is a
    SCALE-encoded string. Results longer than 32 bytes are hashed.
    """
    if value.isdigit():
        number = int(value)
        if number >= 1 << 64:
            raise KeyringError(f"Numeric junction out of range: {value}")
        data = number.to_bytes(8, "little")
    else:
        raw = value.encode("utf-8")
        data = _scale_compact(len(raw)) + raw

    if len(data) > JUNCTION_ID_LEN:
        return hashlib.blake2b(data, digest_size=JUNCTION_ID_LEN).digest()
    return data.ljust(JUNCTION_ID_LEN, b"\x00")


def parse_derivation_path(path: str) -> list[tuple[bool, bytes]]:
    """
    Parse a SURI derivation path into (is_hard, chain_code) junctions.

    Raises KeyringError for anything that is not a sequence of junctions.
    """
    junctions = []
    position = 0
    for match in JUNCTION_RE.finditer(path):
        if match.start() != position:
            raise KeyringError(f"Invalid derivation path: {path!r}")
        junctions.append((match.group(1) == "//", _junction_chain_code(match.group(2))))
        position = match.end()
    if position != len(path):
        raise KeyringError(f"Invalid derivation path: {path!r}")
    return junctions


def mini_secret_from_mnemonic(mnemonic: str, password: str = "") -> bytes:
    """Derive the 32-byte Substrate mini-secret from a mnemonic."""
    entropy = _mnemo.to_entropy(mnemonic)
    salt = Mnemonic.normalize_string("mnemonic" + password).encode("utf-8")
    seed = hashlib.pbkdf2_hmac("sha512", bytes(entropy), salt, PBKDF2_ROUNDS)
    return seed[:MINI_SECRET_SIZE]


def _ed25519_derive_hard(seed: bytes, chain_code: bytes) -> bytes:
    return hashlib.blake2b(ED25519_HDKD + seed + chain_code, digest_size=32).digest()


def generate_mnemonic(word_count: int = DEFAULT_WORD_COUNT) -> str:
    """Generate a fresh BIP-39 mnemonic."""
    if word_count not in MNEMONIC_STRENGTHS:
        raise KeyringError(f"word_count must be one of {sorted(MNEMONIC_STRENGTHS)}")
    return _mnemo.generate(strength=MNEMONIC_STRENGTHS[word_count])


def public_key_from_address(address: str) -> bytes:
    """Decode an SS58 address to its 32-byte public key."""
    try:
        return bytes.fromhex(ss58_decode(address))
    except (ValueError, TypeError) as e:
        raise KeyringError(f"Invalid SS58 address: {address}") from e


# ============================================
# Keyring Class
# ============================================

class Keyring:
    """
    Decrypted secret material for one account.

    Usage:
        keyring = Keyring.generate()
        address = keyring.address
        signature = keyring.sign(b"hello")

        # Persisted form (encrypted by the crypto codec)
        payload = keyring.to_backup_dict()
        same = Keyring.from_backup_dict(payload)
    """

    def __init__(self, mnemonic: str,
                 key_type: str = DEFAULT_KEYRING_TYPE,
                 ss58_format: int | str = DEFAULT_SS58_FORMAT,
                 keypair_password: Optional[str] = None,
                 hard_derivation: Optional[str] = None,
                 soft_derivation: Optional[str] = None):
        """
        Args:
            mnemonic: BIP-39 phrase
            key_type: 'ed25519' or 'sr25519'
            ss58_format: SS58 format number, or a network name such as 'polkadot'
            keypair_password: SURI ///password
            hard_derivation: SURI //junction (without the slashes)
            soft_derivation: SURI /junction (sr25519 only)
        """
        if key_type not in SUPPORTED_KEYRING_TYPES:
            raise KeyringError(f"Unsupported keyring type: {key_type}")
        try:
            ss58_format = resolve_ss58_format(ss58_format)
        except ValueError as e:
            raise KeyringError(str(e)) from None

        mnemonic = " ".join(mnemonic.split()) if isinstance(mnemonic, str) else ""
        if not mnemonic or not _mnemo.check(mnemonic):
            raise KeyringError("Invalid mnemonic phrase")

        self._mnemonic = mnemonic
        self._key_type = key_type
        self._ss58_format = ss58_format
        self._keypair_password = keypair_password or None
        self._hard_derivation = hard_derivation or None
        self._soft_derivation = soft_derivation or None

        # Ed25519PrivateKey or substrateinterface Keypair; both sign raw bytes
        self._signer: Optional[Ed25519PrivateKey | Keypair]
        if key_type == "sr25519":
            self._signer = self._derive_sr25519()
            self._public_key = self._signer.public_key
        else:
            self._signer = Ed25519PrivateKey.from_private_bytes(self._derive_ed25519_seed())
            self._public_key = self._signer.public_key().public_bytes(
                Encoding.Raw, PublicFormat.Raw
            )
        self._address = ss58_encode(self._public_key, ss58_format=ss58_format)

    @classmethod
    def generate(cls, word_count: int = DEFAULT_WORD_COUNT, **options) -> "Keyring":
        """Create a keyring from a fresh random mnemonic."""
        return cls(generate_mnemonic(word_count), **options)

    def _derive_ed25519_seed(self) -> bytes:
        seed = mini_secret_from_mnemonic(self._mnemonic, self._keypair_password or "")
        for is_hard, chain_code in parse_derivation_path(self.derivation_path):
            if not is_hard:
                raise KeyringError("Soft derivation paths are not allowed on ed25519")
            seed = _ed25519_derive_hard(seed, chain_code)
        return seed

    def _derive_sr25519(self) -> Keypair:
        seed = mini_secret_from_mnemonic(self._mnemonic, self._keypair_password or "")
        public_key, secret_key = sr25519.pair_from_seed(seed)
        for is_hard, chain_code in parse_derivation_path(self.derivation_path):
            derive = sr25519.hard_derive_keypair if is_hard else sr25519.derive_keypair
            _, public_key, secret_key = derive((chain_code, public_key, secret_key), b"")
        return Keypair(
            public_key=public_key,
            private_key=secret_key,
            ss58_format=self._ss58_format,
            crypto_type=KeypairType.SR25519,
        )

    # ============================================
    # Properties
    # ============================================

    @property
    def mnemonic(self) -> str:
        """The mnemonic phrase (sensitive - only reveal on explicit export!)."""
        if self._mnemonic is None:
            raise KeyringError("Keyring is locked")
        return self._mnemonic

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def key_type(self) -> str:
        return self._key_type

    @property
    def ss58_format(self) -> int:
        return self._ss58_format

    @property
    def network(self) -> Optional[NetworkConfig]:
        """Known network for this ss58 format, or None for custom formats."""
        return get_network(self._ss58_format)

    @property
    def derivation_path(self) -> str:
        """Hard and soft junctions appended to the mnemonic, e.g. '//stash/0'."""
        path = ""
        if self._hard_derivation:
            path += f"//{self._hard_derivation}"
        if self._soft_derivation:
            path += f"/{self._soft_derivation}"
        return path

    @property
    def is_locked(self) -> bool:
        return self._signer is None

    # ============================================
    # Signing
    # ============================================

    def sign(self, message: str | bytes) -> bytes:
        """Sign a message. Returns a 64-byte ed25519 or sr25519 signature."""
        if self._signer is None:
            raise KeyringError("Keyring is locked")
        if isinstance(message, str):
            message = message.encode("utf-8")
        return self._signer.sign(message)

    def verify(self, message: str | bytes, signature: bytes | str) -> bool:
        """Verify a signature against this keyring's public key."""
        return verify_signature(message, signature, self._address)

    # ============================================
    # Serialization
    # ============================================

    def to_backup_dict(self) -> dict:
        """Plaintext payload that gets encrypted into a wallet record."""
        data = {
            "mnemonic": self.mnemonic,
            "options": {"type": self._key_type, "ss58Format": self._ss58_format},
        }
        if self._keypair_password:
            data["password"] = self._keypair_password
        if self._hard_derivation:
            data["hardDerivation"] = self._hard_derivation
        if self._soft_derivation:
            data["softDerivation"] = self._soft_derivation
        return data

    @classmethod
    def from_backup_dict(cls, data: dict) -> "Keyring":
        """
        Rebuild a keyring from its plaintext payload.

        Older payloads may lack a key type or ss58 format (missing or null);
        defaults apply.

        Raises:
            KeyringError: If the payload is malformed
        """
        if not isinstance(data, dict):
            raise KeyringError("Wallet payload must be an object")
        mnemonic = data.get("mnemonic")
        options = data.get("options")
        if not isinstance(mnemonic, str) or len(mnemonic.split()) < 12:
            raise KeyringError("Wallet payload is missing a valid mnemonic")
        if not isinstance(options, dict):
            raise KeyringError("Wallet payload is missing keyring options")

        ss58_format = options.get("ss58Format")
        return cls(
            mnemonic,
            key_type=options.get("type") or DEFAULT_KEYRING_TYPE,
            ss58_format=DEFAULT_SS58_FORMAT if ss58_format is None else ss58_format,
            keypair_password=data.get("password"),
            hard_derivation=data.get("hardDerivation"),
            soft_derivation=data.get("softDerivation"),
        )

    # ============================================
    # Security: Memory Cleanup
    # ============================================

    def lock(self) -> None:
        """
        Clear secret material from memory.

        The address stays readable; signing and mnemonic access fail after this.
        """
        self._mnemonic = None
        self._keypair_password = None
        self._signer = None

    def __eq__(self, other) -> bool:
        if not isinstance(other, Keyring):
            return NotImplemented
        return (
            self._address == other._address
            and self._mnemonic == other._mnemonic
            and self._options() == other._options()
        )

    def __hash__(self) -> int:
        return hash(self._address)

    def _options(self) -> tuple:
        return (
            self._key_type,
            self._ss58_format,
            self._keypair_password,
            self._hard_derivation,
            self._soft_derivation,
        )

    def __repr__(self) -> str:
        state = "locked" if self.is_locked else "unlocked"
        network = self.network.name if self.network else self._ss58_format
        return (
            f"Keyring(address={self._address!r}, type={self._key_type!r}, "
            f"network={network!r}, {state})"
        )


def verify_signature(message: str | bytes, signature: bytes | str, address: str) -> bool:
    """
    Verify an ed25519 or sr25519 signature against an SS58 address.

    The address does not say which scheme signed, so ed25519 is tried
    first, then sr25519. Signatures may be raw bytes or 0x-prefixed hex.

    Raises:
        KeyringError: If the address cannot be decoded
    """
    public_key = public_key_from_address(address)
    if isinstance(message, str):
        message = message.encode("utf-8")
    if isinstance(signature, str):
        sig = signature[2:] if signature.lower().startswith("0x") else signature
        try:
            signature = bytes.fromhex(sig)
        except ValueError:
            return False
    if len(signature) != 64:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        pass

    keypair = Keypair(public_key=public_key, ss58_format=DEFAULT_SS58_FORMAT,
                      crypto_type=KeypairType.SR25519)
    try:
        return bool(keypair.verify(message, signature))
    except (ValueError, TypeError):
        return False
