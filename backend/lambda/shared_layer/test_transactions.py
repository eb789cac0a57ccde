"""test_transactions.py — Transaction parsing, validation and encoding."""

from __future__ import annotations

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from eth_utils import keccak

from mpc_shared.errors import ValidationError
from mpc_shared.transactions import (
    Eip1559Transaction,
    LegacyTransaction,
    SponsoredTransaction,
    address_from_public_key,
    parse_address,
    parse_transaction,
    parse_u256,
    transaction_hash,
    validate_transaction,
    with_nonce,
)

TO = "0x25DFE735C17FEC1d86A458657189060D65Be69a8"
DATA = "0x6406516041610651325106165165106516169610"
SEPOLIA = 11155111

LEGACY_RLP = (
    "f83980820100833000009425dfe735c17fec1d86a458657189060d65be69a801"
    "94640651604161065132510616516510651616961083aa36a78080"
)
EIP1559_RLP = (
    "02f83c83aa36a78083080000820100833000009425dfe735c17fec1d86a45865"
    "7189060d65be69a801946406516041610651325106165165106516169610c0"
)
LEGACY_ZERO_TO_RLP = (
    "e58082010083300000800194640651604161065132510616516510651616961083aa36a78080"
)
EIP1559_ZERO_TO_RLP = (
    "02e883aa36a78083080000820100833000008001946406516041610651325106165165106516169610c0"
)


def _legacy(**overrides):
    tx = {
        "to": TO,
        "gas": "0x300000",
        "gas_price": "0x100",
        "value": "1",
        "data": DATA,
        "chain_id": SEPOLIA,
    }
    tx.update(overrides)
    return tx


def _eip1559(**overrides):
    tx = {
        "to": TO,
        "gas": "0x300000",
        "max_fee_per_gas": "0x100",
        "max_priority_fee_per_gas": "0x80000",
        "value": "1",
        "data": DATA,
        "chain_id": SEPOLIA,
    }
    tx.update(overrides)
    return tx


TYPED_DATA = {
    "types": {
        "EIP712Domain": [
            {"name": "name", "type": "string"},
            {"name": "version", "type": "string"},
            {"name": "chainId", "type": "uint256"},
            {"name": "verifyingContract", "type": "address"},
        ],
        "Person": [
            {"name": "name", "type": "string"},
            {"name": "wallet", "type": "address"},
        ],
        "Mail": [
            {"name": "from", "type": "Person"},
            {"name": "to", "type": "Person"},
            {"name": "contents", "type": "string"},
        ],
    },
    "primaryType": "Mail",
    "domain": {
        "name": "Ether Mail",
        "version": "1",
        "chainId": 1,
        "verifyingContract": "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
    },
    "message": {
        "from": {"name": "Cow", "wallet": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"},
        "to": {"name": "Bob", "wallet": "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"},
        "contents": "Hello, Bob!",
    },
}


class FieldParsingTests(unittest.TestCase):
    def test_u256_accepts_decimal_hex_and_int(self):
        self.assertEqual(parse_u256("256"), 256)
        self.assertEqual(parse_u256("0x100"), 256)
        self.assertEqual(parse_u256(256), 256)

    def test_u256_rejects_garbage(self):
        for bad in ("-1", "1.5", "0xzz", "", True, None, 2**256):
            with self.assertRaises(ValidationError):
                parse_u256(bad)

    def test_address_is_normalised(self):
        self.assertEqual(parse_address(TO), TO.lower())
        self.assertEqual(parse_address("0x0"), "0x" + "0" * 40)
        with self.assertRaises(ValidationError):
            parse_address("25dfe735c17fec1d86a458657189060d65be69a8")


class EncodingTests(unittest.TestCase):
    def test_legacy_rlp(self):
        tx = parse_transaction(_legacy())
        self.assertIsInstance(tx, LegacyTransaction)
        self.assertEqual(tx.encode().hex(), LEGACY_RLP)

    def test_eip1559_rlp(self):
        tx = parse_transaction(_eip1559())
        self.assertIsInstance(tx, Eip1559Transaction)
        self.assertEqual(tx.encode().hex(), EIP1559_RLP)

    def test_zero_address_encodes_as_empty_to(self):
        self.assertEqual(parse_transaction(_legacy(to="0x0")).encode().hex(), LEGACY_ZERO_TO_RLP)
        self.assertEqual(
            parse_transaction(_eip1559(to="0x0")).encode().hex(), EIP1559_ZERO_TO_RLP
        )

    def test_sponsored_hash_is_eip712_digest(self):
        tx = parse_transaction({"typed_data": TYPED_DATA, "chain_id": 1})
        self.assertIsInstance(tx, SponsoredTransaction)
        self.assertEqual(
            tx.encode().hex(),
            "be609aee343fb3c4b28e1df9e632fca64fcfaede20f02e86244efddf30957bd2",
        )

    def test_transaction_hash(self):
        tx = parse_transaction(_legacy())
        self.assertEqual(transaction_hash(tx), "0x" + keccak(bytes.fromhex(LEGACY_RLP)).hex())

    def test_to_dict_uses_decimal_strings(self):
        tx = with_nonce(parse_transaction(_eip1559()), 3)
        out = tx.to_dict()
        self.assertEqual(out["max_priority_fee_per_gas"], str(0x80000))
        self.assertEqual(out["gas"], str(0x300000))
        self.assertEqual(out["nonce"], "3")
        self.assertEqual(out["to"], TO.lower())
        self.assertEqual(parse_transaction(out).encode(), tx.encode())

    def test_maestro_types(self):
        self.assertEqual(parse_transaction(_legacy()).maestro_type, "EvmStandard")
        self.assertEqual(parse_transaction(_eip1559()).maestro_type, "EvmEIP1559")
        self.assertEqual(
            parse_transaction({"typed_data": TYPED_DATA, "chain_id": 1}).maestro_type, "EvmEIP712"
        )


class ValidationTests(unittest.TestCase):
    def test_unsupported_chain(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_transaction(parse_transaction(_legacy(chain_id=5)))
        self.assertEqual(str(ctx.exception), "chain_id 5 is not supported")

    def test_missing_to(self):
        tx = _legacy()
        del tx["to"]
        with self.assertRaises(ValidationError) as ctx:
            validate_transaction(parse_transaction(tx))
        self.assertEqual(str(ctx.exception), "to address cannot be empty")

    def test_priority_fee_above_max_fee(self):
        tx = parse_transaction(_eip1559(max_fee_per_gas="10", max_priority_fee_per_gas="11"))
        with self.assertRaises(ValidationError) as ctx:
            validate_transaction(tx)
        self.assertEqual(
            str(ctx.exception),
            "max_priority_fee_per_gas cannot be bigger than max_fee_per_gas",
        )

    def test_data_must_be_prefixed(self):
        with self.assertRaises(ValidationError):
            parse_transaction(_legacy(data="6406"))

    def test_unknown_shape(self):
        with self.assertRaises(ValidationError):
            parse_transaction({"to": TO, "gas": "1", "chain_id": 1})


class AddressDerivationTests(unittest.TestCase):
    EXPECTED = "0x90f8bf6a479f320ead074411a4b0e7944ea8c9c1"

    def test_compressed_key(self):
        key = "03e68acfc0253a10620dff706b0a1b1f1f5833ea3beb3bde2250d5f271f3563606"
        self.assertEqual(address_from_public_key(key), self.EXPECTED)

    def test_uncompressed_key_with_prefix(self):
        key = (
            "0x04e68acfc0253a10620dff706b0a1b1f1f5833ea3beb3bde2250d5f271f3563606"
            "672ebc45e0b7ea2e816ecb70ca03137b1c9476eec63d4632e990020b7b6fba39"
        )
        self.assertEqual(address_from_public_key(key), self.EXPECTED)

    def test_invalid_key(self):
        with self.assertRaises(ValidationError):
            address_from_public_key("0x1234")


if __name__ == "__main__":
    unittest.main()
