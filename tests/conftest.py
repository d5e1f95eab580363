"""
Shared pytest fixtures for the begin-cli test suite.
"""

from __future__ import annotations

import pytest

from begin_cli.core.transaction import SignedTransaction, TransferIntent, UnsignedTransaction
from begin_cli.services.blockfrost import ConfirmationStatus
from begin_cli.wallet import bech32
from begin_cli.wallet.manager import WalletManager
from begin_cli.wallet.networks import NetworkId, get_network

# CIP-19 test vector phrase.
TEST_MNEMONIC = "test walk nut penalty hip pave soap entry language right filter choice"
TEST_PASSWORD = "correct horse battery"

TESTNET_BASE = (
    "addr_test1qz2fxv2umyhttkxyxp8x0dlpdt3k6cwng5pxj3jhsydzer3n0d3vllmyqwsx5wktcd8cc3sq835lu7drv2xwl2wywfgs68faae"
)
TESTNET_ENTERPRISE = "addr_test1vz2fxv2umyhttkxyxp8x0dlpdt3k6cwng5pxj3jhsydzerspjrlsz"
MAINNET_BASE = (
    "addr1qx2fxv2umyhttkxyxp8x0dlpdt3k6cwng5pxj3jhsydzer3n0d3vllmyqwsx5wktcd8cc3sq835lu7drv2xwl2wywfgse35a3x"
)
TESTNET_STAKE = "stake_test1uqehkck0lajq8gr28t9uxnuvgcqrc6070x3k9r8048z8y5gssrtvn"
PAYMENT_KEY_HASH = "9493315cd92eb5d8c4304e67b7e16ae36d61d34502694657811a2c8e"
STAKE_KEY_HASH = "337b62cfff6403a06a3acbc34f8c46003c69fe79a3628cefa9c47251"

POOL_HASH = "0f292fcaa02b8b2f9b3c8f9fd8e0bb21abedb692a6d5058df3ef2735"
POOL_ID = bech32.encode("pool", bytes.fromhex(POOL_HASH))

TX_ID = "ab" * 32
UNSIGNED_CBOR = "84a400818258200000a0f5f6"


class FakeSDK:
    """Chain SDK double that records the order of calls in *calls*."""

    def __init__(
        self,
        calls: list | None = None,
        build_error: Exception | None = None,
        sign_error: Exception | None = None,
    ) -> None:
        self.calls = calls if calls is not None else []
        self.build_error = build_error
        self.sign_error = sign_error
        self.built: list[tuple] = []
        self.signed: list[UnsignedTransaction] = []

    async def build(self, intent, sender):
        self.calls.append("build")
        if self.build_error is not None:
            raise self.build_error
        self.built.append((intent, sender))
        return UnsignedTransaction(cbor_hex=UNSIGNED_CBOR, intent=intent, fee=170_000)

    async def sign(self, unsigned, handle):
        assert not handle.closed
        self.calls.append("sign")
        if self.sign_error is not None:
            raise self.sign_error
        self.signed.append(unsigned)
        return SignedTransaction(cbor_hex=unsigned.cbor_hex + "00", tx_id=TX_ID, intent=unsigned.intent)


class FakeProvider:
    """Chain data provider double.

    ``confirm_after`` is the poll on which the transaction shows up;
    ``None`` never confirms.  ``status_errors`` are raised on the first
    polls, one per poll.
    """

    def __init__(
        self,
        calls: list | None = None,
        confirm_after: int | None = 1,
        submit_error: Exception | None = None,
        status_errors: list[Exception] | None = None,
    ) -> None:
        self.calls = calls if calls is not None else []
        self.confirm_after = confirm_after
        self.submit_error = submit_error
        self.status_errors = list(status_errors or [])
        self.submitted: list[str] = []
        self.polls = 0

    async def submit_tx(self, cbor_hex):
        self.calls.append("submit")
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(cbor_hex)
        return TX_ID

    async def tx_status(self, tx_id):
        self.calls.append("status")
        self.polls += 1
        if self.status_errors:
            raise self.status_errors.pop(0)
        if self.confirm_after is not None and self.polls >= self.confirm_after:
            return ConfirmationStatus(tx_id=tx_id, confirmed=True, confirmations=1, block_height=100)
        return ConfirmationStatus(tx_id=tx_id, confirmed=False)


class RecordingSleep:
    """Awaitable sleep that returns at once and remembers each delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def preprod():
    return get_network("preprod")


@pytest.fixture
def manager(tmp_path):
    """Wallet manager on an empty home directory, isolated from the environment."""
    return WalletManager(tmp_path / "home", env={})


@pytest.fixture
def manager_with_wallet(manager):
    """Manager holding one testnet wallet ``w1`` restored from the test phrase."""
    manager.restore("w1", TEST_MNEMONIC, TEST_PASSWORD, NetworkId.TESTNET)
    return manager


@pytest.fixture
def intent(preprod):
    return TransferIntent.create(TESTNET_ENTERPRISE, "2.5", network=preprod)


@pytest.fixture
def sleep():
    return RecordingSleep()
