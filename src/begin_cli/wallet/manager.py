"""High-level wallet manager used by the lifecycle controller and CLI.

Combines the keystore with the CLI configuration: default wallet tracking
and the choice of where a signing secret comes from.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from begin_cli.config import (
    MNEMONIC_ENV,
    CliConfig,
    get_config_path,
    get_wallets_dir,
    load_config,
    update_config_file,
)
from begin_cli.errors import BeginCliError, ErrorKind, invalid_mnemonic, not_found
from begin_cli.wallet import seed_phrase
from begin_cli.wallet.address import derive_addresses
from begin_cli.wallet.keystore import Keystore, SigningHandle, WalletRecord
from begin_cli.wallet.networks import NetworkId

logger = logging.getLogger("begin_cli.wallet.manager")


class SourceKind(str, Enum):
    ENVIRONMENT = "environment"
    KEYSTORE = "keystore"


@dataclass(frozen=True)
class SecretSource:
    """Where the signing secret for one invocation comes from."""

    kind: SourceKind
    wallet: Optional[str] = None

    @property
    def needs_password(self) -> bool:
        return self.kind is SourceKind.KEYSTORE

    def describe(self) -> str:
        if self.kind is SourceKind.ENVIRONMENT:
            return f"${MNEMONIC_ENV}"
        return f"wallet '{self.wallet}'"


class WalletManager:
    """Orchestrates keystore and configuration for wallet operations."""

    def __init__(
        self,
        root: Path,
        config: CliConfig | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.root = Path(root)
        self.config_path = get_config_path(self.root)
        self.config = config if config is not None else load_config(self.config_path)
        self.keystore = Keystore(get_wallets_dir(self.root))
        self._env = os.environ if env is None else env

    # ------------------------------------------------------------------
    # Default wallet
    # ------------------------------------------------------------------

    def get_default(self) -> Optional[str]:
        name = self.config.default_wallet
        if name and self.keystore.exists(name):
            return name
        return None

    def set_default(self, name: str) -> None:
        if not self.keystore.exists(name):
            raise not_found(name)
        self.config.default_wallet = name
        update_config_file(self.config_path, default_wallet=name)
        logger.info(f"Default wallet set to '{name}'")

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    def create(
        self, name: str, network_id: NetworkId, password: str, words: int = 24
    ) -> tuple[list[str], WalletRecord]:
        """Create a wallet; the first wallet becomes the default."""
        phrase, record = self.keystore.create(name, network_id, password, words)
        self._adopt_first_default(name)
        return phrase, record

    def restore(self, name: str, phrase: str, password: str, network_id: NetworkId) -> WalletRecord:
        record = self.keystore.restore(name, phrase, password, network_id)
        self._adopt_first_default(name)
        return record

    def delete(self, name: str) -> None:
        """Delete a wallet, clearing the default if it pointed there."""
        self.keystore.delete(name)
        if self.config.default_wallet == name:
            self.config.default_wallet = None
            update_config_file(self.config_path, default_wallet=None)

    def _adopt_first_default(self, name: str) -> None:
        if self.get_default() is None:
            self.set_default(name)

    # ------------------------------------------------------------------
    # Secret resolution
    # ------------------------------------------------------------------

    def resolve_source(self, wallet: Optional[str] = None) -> SecretSource:
        """Pick exactly one secret source.

        Priority: the mnemonic environment variable, then *wallet*, then the
        default wallet, then the only wallet when exactly one exists.
        """
        if self._env.get(MNEMONIC_ENV, "").strip():
            logger.debug("Using mnemonic from environment; keystore skipped")
            return SecretSource(SourceKind.ENVIRONMENT)

        if wallet:
            if not self.keystore.exists(wallet):
                raise not_found(wallet)
            return SecretSource(SourceKind.KEYSTORE, wallet)

        default = self.get_default()
        if default:
            return SecretSource(SourceKind.KEYSTORE, default)

        names = self.keystore.list()
        if len(names) == 1:
            return SecretSource(SourceKind.KEYSTORE, names[0])

        if not names:
            message = (
                "No wallet found. Create one with 'begin wallet create <name>' "
                f"or set {MNEMONIC_ENV}."
            )
        else:
            message = (
                f"Multiple wallets found ({', '.join(names)}). Pass --wallet "
                "or set a default with 'begin wallet default <name>'."
            )
        raise BeginCliError(ErrorKind.NOT_FOUND, message, code="WALLET_NOT_FOUND")

    def sender_address(self, source: SecretSource, network_id: NetworkId) -> str:
        """Payment address of *source* without unlocking a keystore wallet."""
        if source.kind is SourceKind.ENVIRONMENT:
            return derive_addresses(self._env_phrase(), network_id).base_address
        record = self.keystore.load_record(source.wallet)
        if record.network_id != network_id:
            raise _network_mismatch(source.wallet, record.network_id, network_id)
        return record.addresses.payment

    def stake_address(self, source: SecretSource, network_id: NetworkId) -> str:
        """Reward address of *source*, also without unlocking."""
        if source.kind is SourceKind.ENVIRONMENT:
            return derive_addresses(self._env_phrase(), network_id).stake_address
        record = self.keystore.load_record(source.wallet)
        if record.network_id != network_id:
            raise _network_mismatch(source.wallet, record.network_id, network_id)
        if not record.addresses.stake:
            raise BeginCliError(
                ErrorKind.INPUT,
                f"Wallet '{source.wallet}' has no stake address",
                code="NO_STAKE_KEY",
                wallet=source.wallet,
            )
        return record.addresses.stake

    def open(self, source: SecretSource, network_id: NetworkId, password: Optional[str] = None) -> SigningHandle:
        """Return a signing handle for *source*.

        Keystore wallets require *password*; a wrong one raises
        ``AUTHENTICATION_FAILED``.
        """
        if source.kind is SourceKind.ENVIRONMENT:
            return SigningHandle(self._env_phrase(), network_id)
        handle = self.keystore.unlock(source.wallet, password or "")
        if handle.network_id != network_id:
            handle.close()
            raise _network_mismatch(source.wallet, handle.network_id, network_id)
        return handle

    def _env_phrase(self) -> list[str]:
        words = seed_phrase.normalize(self._env.get(MNEMONIC_ENV, ""))
        if not seed_phrase.validate(words):
            raise invalid_mnemonic(f"{MNEMONIC_ENV} does not contain a valid mnemonic")
        return words


def _network_label(network_id: NetworkId) -> str:
    return "mainnet" if network_id is NetworkId.MAINNET else "testnet"


def _network_mismatch(wallet: str, stored: NetworkId, requested: NetworkId) -> BeginCliError:
    return BeginCliError(
        ErrorKind.INPUT,
        f"Wallet '{wallet}' was created for {_network_label(stored)} "
        f"but the selected network is {_network_label(requested)}",
        code="INVALID_NETWORK",
        wallet=wallet,
    )
