import hashlib
import unittest

import base58
from ecdsa import SECP256k1, VerifyingKey
from ecdsa.util import sigdecode_string

from domain.errors import ConfigError
from infrastructure.alephium.wallet import (
    TOTAL_NUMBER_OF_GROUPS,
    derive_wallet,
    group_of_public_key_hash,
    is_valid_address,
    validate_mnemonic,
)
from tests.fakes import TEST_MNEMONIC


class DeriveWalletTests(unittest.TestCase):
    def test_derivation_is_deterministic(self):
        for index in (1, 2, 42):
            first = derive_wallet(TEST_MNEMONIC, index)
            second = derive_wallet(TEST_MNEMONIC, index)
            self.assertEqual(first.address, second.address)
            self.assertEqual(first.public_key, second.public_key)
            self.assertEqual(first.group, second.group)

    def test_distinct_indexes_give_distinct_addresses(self):
        addresses = {derive_wallet(TEST_MNEMONIC, index).address for index in range(1, 6)}
        self.assertEqual(len(addresses), 5)

    def test_address_layout(self):
        wallet = derive_wallet(TEST_MNEMONIC, 1)
        decoded = base58.b58decode(wallet.address)
        self.assertEqual(decoded[0], 0)
        self.assertEqual(decoded[1:], hashlib.blake2b(bytes.fromhex(wallet.public_key), digest_size=32).digest())
        self.assertTrue(is_valid_address(wallet.address))
        self.assertIn(wallet.group, range(TOTAL_NUMBER_OF_GROUPS))
        self.assertEqual(wallet.group, group_of_public_key_hash(decoded[1:]))

    def test_private_key_is_not_in_repr(self):
        wallet = derive_wallet(TEST_MNEMONIC, 1)
        self.assertNotIn("private", repr(wallet))

    def test_signature_verifies_against_public_key(self):
        wallet = derive_wallet(TEST_MNEMONIC, 3)
        tx_id = "11" * 32
        signature = bytes.fromhex(wallet.sign(tx_id))
        self.assertEqual(len(signature), 64)

        verifying_key = VerifyingKey.from_string(bytes.fromhex(wallet.public_key), curve=SECP256k1)
        self.assertTrue(verifying_key.verify_digest(signature, bytes.fromhex(tx_id), sigdecode=sigdecode_string))
        # Canonical low-S form.
        s = int.from_bytes(signature[32:], "big")
        self.assertLessEqual(s, SECP256k1.order // 2)


class AddressValidationTests(unittest.TestCase):
    def test_rejects_malformed_addresses(self):
        for address in ("", "not-an-address!", "0OIl", "abc"):
            with self.subTest(address=address):
                self.assertFalse(is_valid_address(address))

    def test_rejects_unknown_address_type(self):
        address = base58.b58encode(bytes([9]) + bytes(32)).decode()
        self.assertFalse(is_valid_address(address))


class ValidateMnemonicTests(unittest.TestCase):
    def test_accepts_valid_mnemonic(self):
        validate_mnemonic(TEST_MNEMONIC)

    def test_rejects_invalid_mnemonic(self):
        with self.assertRaises(ConfigError):
            validate_mnemonic("abandon abandon abandon")
        with self.assertRaises(ConfigError):
            validate_mnemonic("")


if __name__ == "__main__":
    unittest.main()
