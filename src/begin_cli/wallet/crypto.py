"""Password-based encryption of wallet secrets.

scrypt stretches the password into an AES-256 key and AES-GCM encrypts the
secret, so a wrong password or tampered file fails the tag check instead of
decrypting to garbage.  KDF cost parameters are pinned per wallet format
version; a future format can raise them without breaking old files.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from begin_cli.errors import auth_failed, unsupported_format

FORMAT_VERSION = 1

SALT_SIZE = 32
IV_SIZE = 12
TAG_SIZE = 16


@dataclass(frozen=True)
class KdfParams:
    """scrypt cost parameters."""

    n: int
    r: int
    p: int
    key_length: int = 32


KDF_PARAMS: dict[int, KdfParams] = {
    1: KdfParams(n=16384, r=8, p=1),
}


@dataclass(frozen=True)
class EncryptedSecret:
    """Output of :func:`encrypt`; all fields are raw bytes."""

    salt: bytes
    iv: bytes
    auth_tag: bytes
    ciphertext: bytes

    def to_dict(self) -> dict[str, str]:
        """Hex-encode for the wallet file."""
        return {
            "salt": self.salt.hex(),
            "iv": self.iv.hex(),
            "authTag": self.auth_tag.hex(),
            "ciphertext": self.ciphertext.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> EncryptedSecret:
        """Parse the hex fields of a wallet file.

        Malformed fields are reported exactly like a failed tag check.
        """
        try:
            return cls(
                salt=bytes.fromhex(data["salt"]),
                iv=bytes.fromhex(data["iv"]),
                auth_tag=bytes.fromhex(data["authTag"]),
                ciphertext=bytes.fromhex(data["ciphertext"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise auth_failed() from exc


def kdf_params(version: int = FORMAT_VERSION) -> KdfParams:
    """Return the KDF parameters for a wallet format *version*."""
    try:
        return KDF_PARAMS[version]
    except KeyError:
        raise unsupported_format(
            f"Unsupported wallet format version {version}. "
            f"Supported: {sorted(KDF_PARAMS)}"
        ) from None


def derive_key(password: str, salt: bytes, version: int = FORMAT_VERSION) -> bytes:
    """Stretch *password* into a 32-byte key with scrypt."""
    params = kdf_params(version)
    kdf = Scrypt(salt=salt, length=params.key_length, n=params.n, r=params.r, p=params.p)
    return kdf.derive(password.encode("utf-8"))


def encrypt(secret: bytes, password: str, version: int = FORMAT_VERSION) -> EncryptedSecret:
    """Encrypt *secret* under *password* with a fresh salt and IV."""
    salt = secrets.token_bytes(SALT_SIZE)
    iv = secrets.token_bytes(IV_SIZE)
    key = derive_key(password, salt, version)

    sealed = AESGCM(key).encrypt(iv, secret, None)
    return EncryptedSecret(
        salt=salt,
        iv=iv,
        auth_tag=sealed[-TAG_SIZE:],
        ciphertext=sealed[:-TAG_SIZE],
    )


def decrypt(encrypted: EncryptedSecret, password: str, version: int = FORMAT_VERSION) -> bytes:
    """Decrypt *encrypted* with *password*.

    Raises
    ------
    BeginCliError
        ``AUTHENTICATION_FAILED`` if the password is wrong or any field was
        altered.  The two cases are deliberately indistinguishable.
    """
    if len(encrypted.auth_tag) != TAG_SIZE or len(encrypted.iv) != IV_SIZE:
        raise auth_failed()
    key = derive_key(password, encrypted.salt, version)
    try:
        return AESGCM(key).decrypt(encrypted.iv, encrypted.ciphertext + encrypted.auth_tag, None)
    except InvalidTag:
        raise auth_failed() from None
