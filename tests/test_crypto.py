"""
Tests for begin_cli.wallet.crypto: scrypt + AES-GCM secret encryption.
"""

from __future__ import annotations

import unittest

from begin_cli.errors import AUTH_FAILED_MESSAGE, BeginCliError, ErrorKind
from begin_cli.wallet import crypto


class TestEncryptDecrypt(unittest.TestCase):

    def setUp(self):
        self.secret = b'["abandon", "ability"]'
        self.sealed = crypto.encrypt(self.secret, "hunter22")

    def test_round_trip(self):
        self.assertEqual(crypto.decrypt(self.sealed, "hunter22"), self.secret)

    def test_field_sizes(self):
        self.assertEqual(len(self.sealed.salt), crypto.SALT_SIZE)
        self.assertEqual(len(self.sealed.iv), crypto.IV_SIZE)
        self.assertEqual(len(self.sealed.auth_tag), crypto.TAG_SIZE)
        self.assertEqual(len(self.sealed.ciphertext), len(self.secret))

    def test_fresh_salt_and_iv_each_call(self):
        other = crypto.encrypt(self.secret, "hunter22")
        self.assertNotEqual(self.sealed.salt, other.salt)
        self.assertNotEqual(self.sealed.iv, other.iv)
        self.assertNotEqual(self.sealed.ciphertext, other.ciphertext)

    def test_wrong_password(self):
        with self.assertRaises(BeginCliError) as ctx:
            crypto.decrypt(self.sealed, "hunter23")
        self.assertIs(ctx.exception.kind, ErrorKind.AUTHENTICATION_FAILED)
        self.assertEqual(ctx.exception.message, AUTH_FAILED_MESSAGE)

    def test_tampered_ciphertext_looks_like_wrong_password(self):
        flipped = bytes([self.sealed.ciphertext[0] ^ 0x01]) + self.sealed.ciphertext[1:]
        tampered = crypto.EncryptedSecret(self.sealed.salt, self.sealed.iv, self.sealed.auth_tag, flipped)
        with self.assertRaises(BeginCliError) as ctx:
            crypto.decrypt(tampered, "hunter22")
        self.assertEqual(ctx.exception.message, AUTH_FAILED_MESSAGE)

    def test_tampered_tag(self):
        tag = bytes(b ^ 0xFF for b in self.sealed.auth_tag)
        tampered = crypto.EncryptedSecret(self.sealed.salt, self.sealed.iv, tag, self.sealed.ciphertext)
        with self.assertRaises(BeginCliError) as ctx:
            crypto.decrypt(tampered, "hunter22")
        self.assertIs(ctx.exception.kind, ErrorKind.AUTHENTICATION_FAILED)

    def test_truncated_tag(self):
        tampered = crypto.EncryptedSecret(
            self.sealed.salt, self.sealed.iv, self.sealed.auth_tag[:8], self.sealed.ciphertext
        )
        with self.assertRaises(BeginCliError) as ctx:
            crypto.decrypt(tampered, "hunter22")
        self.assertIs(ctx.exception.kind, ErrorKind.AUTHENTICATION_FAILED)


class TestSerialization(unittest.TestCase):

    def test_dict_round_trip(self):
        sealed = crypto.encrypt(b"secret", "pw")
        data = sealed.to_dict()
        self.assertEqual(set(data), {"salt", "iv", "authTag", "ciphertext"})
        self.assertEqual(crypto.EncryptedSecret.from_dict(data), sealed)

    def test_malformed_hex_is_auth_failure(self):
        with self.assertRaises(BeginCliError) as ctx:
            crypto.EncryptedSecret.from_dict({"salt": "zz", "iv": "", "authTag": "", "ciphertext": ""})
        self.assertIs(ctx.exception.kind, ErrorKind.AUTHENTICATION_FAILED)

    def test_missing_field_is_auth_failure(self):
        with self.assertRaises(BeginCliError):
            crypto.EncryptedSecret.from_dict({"salt": "00"})


class TestKdfParams(unittest.TestCase):

    def test_version_one_params(self):
        params = crypto.kdf_params(1)
        self.assertEqual((params.n, params.r, params.p, params.key_length), (16384, 8, 1, 32))

    def test_unknown_version(self):
        with self.assertRaises(BeginCliError) as ctx:
            crypto.kdf_params(99)
        self.assertIs(ctx.exception.kind, ErrorKind.UNSUPPORTED_FORMAT)

    def test_derive_key_is_deterministic(self):
        salt = b"\x01" * crypto.SALT_SIZE
        self.assertEqual(crypto.derive_key("pw", salt), crypto.derive_key("pw", salt))
        self.assertNotEqual(crypto.derive_key("pw", salt), crypto.derive_key("pw2", salt))
        self.assertEqual(len(crypto.derive_key("pw", salt)), 32)
