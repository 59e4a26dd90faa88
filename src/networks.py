"""
Networks - SS58 address formats and keyring defaults.

Supports Polkadot, Kusama and the generic Substrate format. Keyrings
accept either an SS58 format number or one of these network names.
"""

from dataclasses import dataclass
from typing import Optional

# ============================================
# Network Configurations
# ============================================

@dataclass
class NetworkConfig:
    """SS58 configuration for a Substrate-based network."""
    ss58_format: int
    name: str
    display_name: str


NETWORKS = {
    0: NetworkConfig(ss58_format=0, name="polkadot", display_name="Polkadot"),
    2: NetworkConfig(ss58_format=2, name="kusama", display_name="Kusama"),
    42: NetworkConfig(ss58_format=42, name="substrate", display_name="Substrate (generic)"),
}

# Default SS58 format for new keyrings (generic substrate)
DEFAULT_SS58_FORMAT = 42

# Valid SS58 format range (14-bit), minus the reserved prefixes
MAX_SS58_FORMAT = 16383
RESERVED_SS58_FORMATS = (46, 47)

# ============================================
# Keyring Defaults
# ============================================

DEFAULT_KEYRING_TYPE = "ed25519"

# Key types the keyring can derive. ecdsa is not supported: the available
# bindings only produce Ethereum-style accounts, not SS58 ones.
SUPPORTED_KEYRING_TYPES = ("ed25519", "sr25519")


def get_network(ss58_format: int) -> Optional[NetworkConfig]:
    """Get network config by SS58 format."""
    return NETWORKS.get(ss58_format)


def get_network_by_name(name: str) -> Optional[NetworkConfig]:
    """Get network config by name (e.g. 'polkadot')."""
    for network in NETWORKS.values():
        if network.name == name.lower():
            return network
    return None


def resolve_ss58_format(value: int | str) -> int:
    """
    Resolve an SS58 format number or network name to a format number.

    Raises:
        ValueError: For unknown names or out-of-range numbers
    """
    if isinstance(value, str):
        network = get_network_by_name(value)
        if network is None:
            raise ValueError(f"Unknown network: {value}")
        return network.ss58_format
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Invalid ss58 format: {value}")
    if not 0 <= value <= MAX_SS58_FORMAT or value in RESERVED_SS58_FORMATS:
        raise ValueError(f"Invalid ss58 format: {value}")
    return value
