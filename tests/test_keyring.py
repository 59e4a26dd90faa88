"""Tests for mnemonic keyrings and SS58 addresses."""

import hashlib

import pytest

from scalecodec.utils.ss58 import is_valid_ss58_address

from wallet import Keyring, KeyringError, generate_mnemonic, verify_signature
from wallet.keyring import parse_derivation_path, public_key_from_address

from conftest import DEV_PHRASE


class TestKeyringCreation:
    """Tests for building keyrings from mnemonics."""

    def test_generate_defaults_to_24_words(self):
        keyring = Keyring.generate()
        assert len(keyring.mnemonic.split()) == 24
        assert keyring.key_type == "ed25519"
        assert keyring.ss58_format == 42

    def test_generate_12_words(self):
        assert len(generate_mnemonic(12).split()) == 12

    def test_invalid_word_count(self):
        with pytest.raises(KeyringError, match="word_count"):
            generate_mnemonic(13)

    def test_invalid_mnemonic_rejected(self):
        words = DEV_PHRASE.split()
        words[-1] = "notaword"
        with pytest.raises(KeyringError, match="Invalid mnemonic"):
            Keyring(" ".join(words))

    def test_unsupported_key_type(self):
        with pytest.raises(KeyringError, match="Unsupported keyring type"):
            Keyring(DEV_PHRASE, key_type="ecdsa")

    def test_network_name_selects_format(self):
        keyring = Keyring(DEV_PHRASE, ss58_format="Polkadot")
        assert keyring.ss58_format == 0
        assert keyring.network.name == "polkadot"
        assert keyring.address == Keyring(DEV_PHRASE, ss58_format=0).address

    def test_custom_format_has_no_network(self):
        assert Keyring(DEV_PHRASE, ss58_format=7).network is None

    @pytest.mark.parametrize("ss58_format", ["moonbeam", -1, 46, 16384, None, True])
    def test_invalid_ss58_format(self, ss58_format):
        with pytest.raises(KeyringError):
            Keyring(DEV_PHRASE, ss58_format=ss58_format)

    def test_whitespace_is_normalized(self):
        messy = "  " + DEV_PHRASE.replace(" ", "   ") + "\n"
        assert Keyring(messy).address == Keyring(DEV_PHRASE).address


class TestAddressDerivation:
    """Tests for deterministic SS58 addresses."""

    def test_dev_phrase_known_address(self):
        assert Keyring(DEV_PHRASE).address == "5DFJF7tY4bpbpcKPJcBTQaKuCDEPCpiz8TRjpmLeTtweqmXL"

    def test_dev_phrase_hard_junction_known_key(self):
        alice = Keyring(DEV_PHRASE, hard_derivation="Alice")
        assert alice.public_key.hex() == "88dc3417d5058ec4b4503e0c12ea1a0a89be200fe98922423d4334014fa6b0ee"
        assert alice.address == "5FA9nQDVg267DEd8m1ZypXLBnvN7SFxYwV7ndqSYGiN9TTpu"

    def test_address_is_deterministic(self):
        assert Keyring(DEV_PHRASE).address == Keyring(DEV_PHRASE).address

    def test_address_is_valid_ss58(self):
        keyring = Keyring(DEV_PHRASE)
        assert is_valid_ss58_address(keyring.address, valid_ss58_format=42)

    def test_ss58_format_changes_encoding_not_key(self):
        generic = Keyring(DEV_PHRASE, ss58_format=42)
        polkadot = Keyring(DEV_PHRASE, ss58_format=0)
        assert generic.address != polkadot.address
        assert generic.public_key == polkadot.public_key
        assert polkadot.address.startswith("1")

    def test_public_key_round_trips_through_address(self):
        keyring = Keyring(DEV_PHRASE)
        assert public_key_from_address(keyring.address) == keyring.public_key

    def test_keypair_password_changes_address(self):
        assert Keyring(DEV_PHRASE, keypair_password="secret").address != Keyring(DEV_PHRASE).address

    def test_hard_derivation_changes_address(self):
        alice = Keyring(DEV_PHRASE, hard_derivation="Alice")
        bob = Keyring(DEV_PHRASE, hard_derivation="Bob")
        assert alice.address != bob.address
        assert alice.address == Keyring(DEV_PHRASE, hard_derivation="Alice").address
        assert alice.derivation_path == "//Alice"

    def test_soft_derivation_rejected_for_ed25519(self):
        with pytest.raises(KeyringError, match="Soft derivation"):
            Keyring(DEV_PHRASE, soft_derivation="0")


class TestDerivationPath:
    """Tests for SURI junction parsing."""

    def test_parse_hard_and_soft(self):
        junctions = parse_derivation_path("//polkadot/0")
        assert [hard for hard, _ in junctions] == [True, False]
        assert all(len(code) == 32 for _, code in junctions)

    def test_numeric_junction_is_u64_le(self):
        (_, code), = parse_derivation_path("//1")
        assert code == (1).to_bytes(8, "little").ljust(32, b"\x00")

    def test_string_junction_is_scale_encoded(self):
        (_, code), = parse_derivation_path("//Alice")
        assert code == (bytes([5 << 2]) + b"Alice").ljust(32, b"\x00")

    def test_long_junction_is_hashed(self):
        value = "x" * 64
        (_, code), = parse_derivation_path("//" + value)
        encoded = ((64 << 2) | 1).to_bytes(2, "little") + value.encode()
        assert code == hashlib.blake2b(encoded, digest_size=32).digest()

    def test_empty_path(self):
        assert parse_derivation_path("") == []

    def test_invalid_path(self):
        with pytest.raises(KeyringError):
            parse_derivation_path("Alice")


class TestSigning:
    """Tests for ed25519 signing and verification."""

    def test_sign_and_verify(self):
        keyring = Keyring(DEV_PHRASE)
        signature = keyring.sign("hello world")
        assert len(signature) == 64
        assert keyring.verify("hello world", signature)
        assert verify_signature(b"hello world", "0x" + signature.hex(), keyring.address)

    def test_verify_rejects_other_message(self):
        keyring = Keyring(DEV_PHRASE)
        signature = keyring.sign("hello world")
        assert not verify_signature("goodbye", signature, keyring.address)

    def test_verify_rejects_other_signer(self):
        signature = Keyring(DEV_PHRASE).sign("hello")
        other = Keyring.generate(12)
        assert not verify_signature("hello", signature, other.address)

    def test_verify_rejects_bad_hex(self):
        assert not verify_signature("hello", "0xnothex", Keyring(DEV_PHRASE).address)

    def test_verify_invalid_address(self):
        with pytest.raises(KeyringError, match="Invalid SS58"):
            verify_signature("hello", b"\x00" * 64, "not-an-address")


class TestBackupPayload:
    """Tests for the plaintext payload round trip."""

    def test_round_trip(self):
        keyring = Keyring(DEV_PHRASE, ss58_format=0, keypair_password="pw", hard_derivation="stash")
        payload = keyring.to_backup_dict()
        assert payload["options"] == {"type": "ed25519", "ss58Format": 0}
        assert payload["hardDerivation"] == "stash"
        assert Keyring.from_backup_dict(payload) == keyring

    def test_optional_fields_omitted(self):
        payload = Keyring(DEV_PHRASE).to_backup_dict()
        assert set(payload) == {"mnemonic", "options"}

    def test_missing_options_defaults(self):
        keyring = Keyring.from_backup_dict({"mnemonic": DEV_PHRASE, "options": {}})
        assert keyring.key_type == "ed25519"
        assert keyring.ss58_format == 42

    def test_null_options_default(self):
        payload = {"mnemonic": DEV_PHRASE, "options": {"type": None, "ss58Format": None}}
        keyring = Keyring.from_backup_dict(payload)
        assert keyring.key_type == "ed25519"
        assert keyring.ss58_format == 42

    def test_sr25519_round_trip(self):
        keyring = Keyring(DEV_PHRASE, key_type="sr25519", hard_derivation="Alice", soft_derivation="0")
        payload = keyring.to_backup_dict()
        assert payload["options"]["type"] == "sr25519"
        assert payload["softDerivation"] == "0"
        assert Keyring.from_backup_dict(payload).address == keyring.address

    @pytest.mark.parametrize("payload", [
        None,
        {"options": {}},
        {"mnemonic": "too short", "options": {}},
        {"mnemonic": DEV_PHRASE},
    ])
    def test_malformed_payload(self, payload):
        with pytest.raises(KeyringError):
            Keyring.from_backup_dict(payload)


class TestLock:
    """Tests for clearing secret material."""

    def test_lock_clears_secrets(self):
        keyring = Keyring(DEV_PHRASE)
        address = keyring.address
        keyring.lock()

        assert keyring.is_locked
        assert keyring.address == address
        with pytest.raises(KeyringError, match="locked"):
            keyring.mnemonic
        with pytest.raises(KeyringError, match="locked"):
            keyring.sign("hello")

    def test_repr_hides_mnemonic(self):
        keyring = Keyring(DEV_PHRASE)
        assert "bottom" not in repr(keyring)
        assert keyring.address in repr(keyring)


class TestSr25519:
    """Tests for schnorrkel keyrings."""

    def test_dev_phrase_alice(self):
        alice = Keyring(DEV_PHRASE, key_type="sr25519", hard_derivation="Alice")
        assert alice.address == "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"

    def test_differs_from_ed25519(self):
        assert Keyring(DEV_PHRASE, key_type="sr25519").address != Keyring(DEV_PHRASE).address

    def test_soft_derivation_allowed(self):
        hard = Keyring(DEV_PHRASE, key_type="sr25519", hard_derivation="Alice")
        soft = Keyring(DEV_PHRASE, key_type="sr25519", hard_derivation="Alice", soft_derivation="0")
        assert soft.derivation_path == "//Alice/0"
        assert soft.address != hard.address
        assert soft.address == Keyring(
            DEV_PHRASE, key_type="sr25519", hard_derivation="Alice", soft_derivation="0"
        ).address

    def test_keypair_password_changes_address(self):
        plain = Keyring(DEV_PHRASE, key_type="sr25519")
        protected = Keyring(DEV_PHRASE, key_type="sr25519", keypair_password="secret")
        assert plain.address != protected.address

    def test_sign_and_verify(self):
        keyring = Keyring(DEV_PHRASE, key_type="sr25519", soft_derivation="1")
        signature = keyring.sign("hello world")
        assert len(signature) == 64
        assert verify_signature("hello world", signature, keyring.address)
        assert verify_signature("hello world", "0x" + signature.hex(), keyring.address)
        assert not verify_signature("goodbye", signature, keyring.address)

    def test_lock(self):
        keyring = Keyring(DEV_PHRASE, key_type="sr25519")
        keyring.lock()
        with pytest.raises(KeyringError, match="locked"):
            keyring.sign("hello")
