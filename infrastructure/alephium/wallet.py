from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field

import base58
from bip_utils import Bip32Slip10Secp256k1, Bip39MnemonicValidator, Bip39SeedGenerator
from ecdsa import SECP256k1, SigningKey
from ecdsa.util import sigencode_string_canonize

from domain.errors import ConfigError

TOTAL_NUMBER_OF_GROUPS = 4

# BIP44 coin type registered for Alephium.
ALEPHIUM_DERIVATION_PATH = "m/44'/1234'/0'/0/{index}"

P2PKH_ADDRESS_TYPE = 0x00
KNOWN_ADDRESS_TYPES = (0x00, 0x01, 0x02, 0x03)

_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


@dataclass(frozen=True)
class WalletHandle:
    """
    Signing capability for one custodial address.

    Handles are derived on demand and must never be stored: the private
    key only lives for the duration of the call that derived it.
    """

    address: str
    public_key: str
    group: int
    _private_key: bytes = field(repr=False)

    def sign(self, tx_id: str) -> str:
        """Sign a transaction id, returning the 64-byte `r||s` signature as hex."""

        signing_key = SigningKey.from_string(self._private_key, curve=SECP256k1)
        signature = signing_key.sign_digest_deterministic(
            bytes.fromhex(tx_id),
            hashfunc=hashlib.sha256,
            sigencode=sigencode_string_canonize,
        )
        return signature.hex()


def validate_mnemonic(mnemonic: str) -> None:
    """Raise `ConfigError` if the master mnemonic is not a valid BIP39 phrase."""

    if not mnemonic or not Bip39MnemonicValidator().IsValid(mnemonic.strip()):
        raise ConfigError("The configured mnemonic is not a valid BIP39 mnemonic.")


def derive_wallet(mnemonic: str, index: int) -> WalletHandle:
    """
    Derive the wallet of index `index` from the master mnemonic.

    Pure function: the same inputs always give the same address and key.
    """

    seed = Bip39SeedGenerator(mnemonic.strip()).Generate()
    node = Bip32Slip10Secp256k1.FromSeed(seed).DerivePath(ALEPHIUM_DERIVATION_PATH.format(index=index))

    private_key = node.PrivateKey().Raw().ToBytes()
    public_key = node.PublicKey().RawCompressed().ToBytes()
    public_key_hash = hashlib.blake2b(public_key, digest_size=32).digest()

    return WalletHandle(
        address=base58.b58encode(bytes([P2PKH_ADDRESS_TYPE]) + public_key_hash).decode("ascii"),
        public_key=public_key.hex(),
        group=group_of_public_key_hash(public_key_hash),
        _private_key=private_key,
    )


def _djb_hash(data: bytes) -> int:
    value = 5381
    for byte in data:
        value = ((value << 5) + value + byte) & 0xFFFFFFFF
    return value


def _xor_bytes(value: int) -> int:
    return ((value >> 24) ^ (value >> 16) ^ (value >> 8) ^ value) & 0xFF


def group_of_public_key_hash(public_key_hash: bytes) -> int:
    hint = _djb_hash(public_key_hash) | 1
    return _xor_bytes(hint) % TOTAL_NUMBER_OF_GROUPS


def is_valid_address(address: str) -> bool:
    """
    Syntactic check of an Alephium address.

    No network call is made: this only checks the alphabet, the address
    type byte and the payload length.
    """

    if not address or not _BASE58_RE.match(address):
        return False
    try:
        decoded = base58.b58decode(address)
    except ValueError:
        return False
    return len(decoded) > 0 and decoded[0] in KNOWN_ADDRESS_TYPES and len(decoded) - 1 >= 32
