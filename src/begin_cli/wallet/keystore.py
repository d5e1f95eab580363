"""Encrypted keystore: one password-protected JSON file per named wallet.

File layout (format version 1)::

    {
      "version": 1,
      "name": "w1",
      "networkId": 0,
      "encrypted": {"salt": hex, "iv": hex, "authTag": hex, "ciphertext": hex},
      "createdAt": "2026-01-01T00:00:00+00:00",
      "addresses": {"payment": "addr_test1...", "stake": "stake_test1..."}
    }

The plaintext is the JSON-encoded word list of the seed phrase.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from begin_cli.errors import (
    BeginCliError,
    already_exists,
    auth_failed,
    input_error,
    invalid_mnemonic,
    not_found,
    unsupported_format,
)
from begin_cli.utils import atomic_write_text, ensure_private_dir
from begin_cli.wallet import crypto, seed_phrase
from begin_cli.wallet.address import (
    DerivedAddresses,
    ExtendedKey,
    derive_addresses,
    payment_key,
    shorten_address,
    stake_key,
)
from begin_cli.wallet.networks import NetworkId

logger = logging.getLogger("begin_cli.wallet.keystore")

SUPPORTED_VERSIONS = frozenset(crypto.KDF_PARAMS)

_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class CachedAddresses(BaseModel):
    payment: str
    stake: Optional[str] = None


class EncryptedFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    salt: str
    iv: str
    auth_tag: str = Field(alias="authTag")
    ciphertext: str


class WalletRecord(BaseModel):
    """A wallet file as stored on disk."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = crypto.FORMAT_VERSION
    name: str
    network_id: NetworkId = Field(alias="networkId")
    encrypted: EncryptedFields
    created_at: datetime = Field(alias="createdAt")
    addresses: CachedAddresses

    @property
    def secret(self) -> crypto.EncryptedSecret:
        return crypto.EncryptedSecret.from_dict(self.encrypted.model_dump(by_alias=True))

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True), indent=2)


class SigningHandle:
    """In-memory capability to derive signing keys for one wallet.

    Holds the decrypted phrase until :meth:`close` is called (or the
    ``with`` block exits).  Never persisted.
    """

    def __init__(self, words: list[str], network_id: NetworkId, wallet: Optional[str] = None) -> None:
        self._words: Optional[list[str]] = list(words)
        self.network_id = network_id
        self.wallet = wallet

    def _phrase(self) -> list[str]:
        if self._words is None:
            raise RuntimeError("Signing handle has been closed")
        return self._words

    @property
    def closed(self) -> bool:
        return self._words is None

    def payment_key(self, account_index: int = 0, address_index: int = 0) -> ExtendedKey:
        return payment_key(self._phrase(), account_index, address_index)

    def stake_key(self, account_index: int = 0) -> ExtendedKey:
        return stake_key(self._phrase(), account_index)

    def addresses(self, account_index: int = 0, address_index: int = 0) -> DerivedAddresses:
        return derive_addresses(self._phrase(), self.network_id, account_index, address_index)

    def close(self) -> None:
        if self._words is not None:
            self._words.clear()
            self._words = None

    def __enter__(self) -> SigningHandle:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"SigningHandle(wallet={self.wallet!r}, network_id={int(self.network_id)}, {state})"


def validate_wallet_name(name: str) -> str:
    if not _NAME_RE.match(name or ""):
        raise input_error(
            f"Invalid wallet name '{name}'. Use 1-64 letters, digits, '-' or '_'.",
            code="INVALID_NAME",
        )
    return name


def _decode_plaintext(plaintext: bytes) -> list[str]:
    """Accept the JSON word list as well as a legacy space-separated string."""
    text = plaintext.decode("utf-8")
    try:
        words = json.loads(text)
    except json.JSONDecodeError:
        return seed_phrase.normalize(text)
    if isinstance(words, str):
        return seed_phrase.normalize(words)
    if isinstance(words, list) and all(isinstance(w, str) for w in words):
        return seed_phrase.normalize(words)
    raise auth_failed()


# ---------------------------------------------------------------------------
# Keystore manager
# ---------------------------------------------------------------------------

class Keystore:
    """Persists, loads, lists and deletes named wallet files.

    Parameters
    ----------
    wallets_dir:
        Directory holding ``<name>.json`` files.  Created owner-only on
        first write.
    """

    def __init__(self, wallets_dir: Path) -> None:
        self.wallets_dir = Path(wallets_dir)

    def path_for(self, name: str) -> Path:
        return self.wallets_dir / f"{validate_wallet_name(name)}.json"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def list(self) -> list[str]:
        """Wallet names in sorted order."""
        if not self.wallets_dir.is_dir():
            return []
        return sorted(
            p.stem for p in self.wallets_dir.glob("*.json")
            if p.is_file() and _NAME_RE.match(p.stem)
        )

    def load_record(self, name: str) -> WalletRecord:
        """Read a wallet file without decrypting it.

        Raises
        ------
        BeginCliError
            ``NOT_FOUND`` if absent, ``UNSUPPORTED_FORMAT`` if the file is
            unreadable or carries an unknown format version.
        """
        path = self.path_for(name)
        if not path.exists():
            raise not_found(name)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise unsupported_format(f"Wallet file {path} is unreadable: {exc}") from exc
        if not isinstance(data, dict):
            raise unsupported_format(f"Wallet file {path} is not a JSON object")

        version = data.get("version")
        if version not in SUPPORTED_VERSIONS:
            raise unsupported_format(
                f"Wallet '{name}' has unsupported format version {version!r}. "
                f"Supported: {sorted(SUPPORTED_VERSIONS)}"
            )
        try:
            return WalletRecord.model_validate(data)
        except ValidationError as exc:
            raise unsupported_format(f"Wallet file {path} is malformed: {exc}") from exc

    def get_addresses(self, name: str) -> CachedAddresses:
        """Cached cleartext addresses; no password required."""
        return self.load_record(name).addresses

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        network_id: NetworkId,
        password: str,
        words: int = seed_phrase.DEFAULT_WORDS,
    ) -> tuple[list[str], WalletRecord]:
        """Generate a new phrase and store it encrypted under *name*.

        Returns the plaintext phrase exactly once, together with the record.
        """
        if self.exists(name):
            raise already_exists(name)
        phrase = seed_phrase.generate(words)
        record = self._store(name, phrase, NetworkId(network_id), password)
        logger.info(f"Created wallet '{name}' ({shorten_address(record.addresses.payment)})")
        return phrase, record

    def restore(
        self,
        name: str,
        phrase: seed_phrase.Phrase,
        password: str,
        network_id: NetworkId = NetworkId.MAINNET,
    ) -> WalletRecord:
        """Store an existing phrase under *name* after checksum validation."""
        if self.exists(name):
            raise already_exists(name)
        words = seed_phrase.normalize(phrase)
        if not seed_phrase.validate(words):
            raise invalid_mnemonic()
        record = self._store(name, words, NetworkId(network_id), password)
        logger.info(f"Restored wallet '{name}' ({shorten_address(record.addresses.payment)})")
        return record

    def unlock(self, name: str, password: str) -> SigningHandle:
        """Decrypt wallet *name* and return a signing handle.

        Raises ``AUTHENTICATION_FAILED`` with the uniform message for a
        wrong password or a corrupted file.
        """
        record = self.load_record(name)
        try:
            plaintext = crypto.decrypt(record.secret, password, record.version)
            words = _decode_plaintext(plaintext)
        except BeginCliError as exc:
            raise exc.with_context(wallet=name)
        except UnicodeDecodeError:
            raise auth_failed(name) from None
        return SigningHandle(words, record.network_id, wallet=name)

    def delete(self, name: str) -> None:
        path = self.path_for(name)
        if not path.exists():
            raise not_found(name)
        path.unlink()
        logger.info(f"Deleted wallet '{name}'")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store(self, name: str, words: list[str], network_id: NetworkId, password: str) -> WalletRecord:
        addresses = derive_addresses(words, network_id)
        secret = crypto.encrypt(json.dumps(words).encode("utf-8"), password)
        record = WalletRecord(
            version=crypto.FORMAT_VERSION,
            name=name,
            network_id=network_id,
            encrypted=EncryptedFields.model_validate(secret.to_dict()),
            created_at=datetime.now(timezone.utc),
            addresses=CachedAddresses(
                payment=addresses.base_address,
                stake=addresses.stake_address,
            ),
        )
        ensure_private_dir(self.wallets_dir)
        try:
            # A wallet created by a concurrent run since the exists() check wins.
            atomic_write_text(self.path_for(name), record.to_json(), exclusive=True)
        except FileExistsError:
            raise already_exists(name) from None
        return record
