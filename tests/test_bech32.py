"""
Tests for begin_cli.wallet.bech32: BIP-173 vectors and malformed input.
"""

from __future__ import annotations

import unittest

from begin_cli.errors import BeginCliError
from begin_cli.wallet import bech32

VALID = [
    "A12UEL5L",
    "a12uel5l",
    "an83characterlonghumanreadablepartthatcontainsthenumber1andtheexcludedcharactersbio1tt5tgs",
    "abcdef1qpzry9x8gf2tvdw0s3jn54khce6mua7lmqqqxw",
    "split1checkupstagehandshakeupstreamerranterredcaperred2y9e3w",
]

INVALID = [
    "pzry9x0s0muk",        # no separator
    "1pzry9x0s0muk",       # empty hrp
    "x1b4n0q5v",           # invalid data character
    "li1dgmt3",            # checksum too short
    "A1G7SGD8",            # checksum computed over uppercase hrp
    "a12UEL5L",            # mixed case
    "10a06t8",             # empty hrp
    "1qzzfhee",            # empty hrp
    "abcdef1qpzry9x8gf2tvdw0s3jn54khce6mua7lmqqqxx",  # bad checksum
]


class TestDecode(unittest.TestCase):

    def test_valid_vectors(self):
        for text in VALID:
            with self.subTest(text=text):
                hrp, _ = bech32.decode(text)
                self.assertEqual(hrp, text.lower()[:text.lower().rfind("1")])

    def test_invalid_vectors(self):
        for text in INVALID:
            with self.subTest(text=text):
                with self.assertRaises(BeginCliError) as ctx:
                    bech32.decode(text)
                self.assertEqual(ctx.exception.code, "INVALID_ADDRESS")

    def test_empty_input(self):
        with self.assertRaises(BeginCliError):
            bech32.decode("")

    def test_no_length_limit(self):
        payload = bytes(range(57))
        text = bech32.encode("addr_test", payload)
        self.assertGreater(len(text), 90)
        self.assertEqual(bech32.decode(text), ("addr_test", payload))


class TestEncode(unittest.TestCase):

    def test_reencodes_vector(self):
        text = "abcdef1qpzry9x8gf2tvdw0s3jn54khce6mua7lmqqqxw"
        hrp, payload = bech32.decode(text)
        self.assertEqual(bech32.encode(hrp, payload), text)

    def test_output_is_lowercase(self):
        text = bech32.encode("STAKE", b"\x01\x02")
        self.assertEqual(text, text.lower())

    def test_invalid_hrp(self):
        with self.assertRaises(ValueError):
            bech32.encode("", b"\x00")


class TestConvertBits(unittest.TestCase):

    def test_eight_to_five_and_back(self):
        data = bytes([0xFF, 0x00, 0xAB])
        five = bech32.convert_bits(data, 8, 5)
        self.assertEqual(bytes(bech32.convert_bits(five, 5, 8, pad=False)), data)

    def test_out_of_range_value(self):
        with self.assertRaises(ValueError):
            bech32.convert_bits([32], 5, 8)

    def test_nonzero_padding_rejected(self):
        with self.assertRaises(ValueError):
            bech32.convert_bits([31], 5, 8, pad=False)
