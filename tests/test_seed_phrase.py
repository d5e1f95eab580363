"""
Tests for begin_cli.wallet.seed_phrase: BIP-39 generation and validation.
"""

from __future__ import annotations

import unittest

import pytest

from begin_cli.errors import BeginCliError, ErrorKind
from begin_cli.wallet import seed_phrase

from tests.conftest import TEST_MNEMONIC


class TestGenerate(unittest.TestCase):

    def test_default_length(self):
        self.assertEqual(len(seed_phrase.generate()), 24)

    def test_generated_phrases_validate(self):
        for words in (12, 15, 18, 21, 24):
            phrase = seed_phrase.generate(words)
            self.assertEqual(len(phrase), words)
            self.assertTrue(seed_phrase.validate(phrase))

    def test_phrases_differ(self):
        self.assertNotEqual(seed_phrase.generate(), seed_phrase.generate())

    def test_unsupported_length(self):
        with self.assertRaises(ValueError):
            seed_phrase.generate(13)


class TestValidate(unittest.TestCase):

    def test_known_phrase(self):
        self.assertTrue(seed_phrase.validate(TEST_MNEMONIC))

    def test_case_and_whitespace_are_normalized(self):
        messy = "  " + TEST_MNEMONIC.upper().replace(" ", "   ") + "\n"
        self.assertTrue(seed_phrase.validate(messy))
        self.assertEqual(seed_phrase.normalize(messy), TEST_MNEMONIC.split())

    def test_bad_checksum(self):
        words = TEST_MNEMONIC.split()
        words[-1] = "abandon"
        self.assertFalse(seed_phrase.validate(words))

    def test_word_outside_list(self):
        words = TEST_MNEMONIC.split()
        words[0] = "cardano"
        self.assertFalse(seed_phrase.validate(words))

    def test_wrong_count(self):
        self.assertFalse(seed_phrase.validate(TEST_MNEMONIC.split()[:11]))
        self.assertFalse(seed_phrase.validate(""))


def test_to_entropy_known_phrase():
    assert len(seed_phrase.to_entropy(TEST_MNEMONIC)) == 16


def test_to_entropy_rejects_invalid_phrase():
    with pytest.raises(BeginCliError) as exc_info:
        seed_phrase.to_entropy("abandon " * 12)
    assert exc_info.value.kind is ErrorKind.INVALID_MNEMONIC
