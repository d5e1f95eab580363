"""Chain SDK seam.

The lifecycle controller only needs two things from a chain SDK: turn an
intent into an unsigned payload, and turn that payload plus an unlocked
wallet into a signed payload with its transaction id.
:class:`PyCardanoSDK` provides both on top of pycardano for transfers,
delegations and reward withdrawals.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from begin_cli.core.transaction import (
    DelegationIntent,
    Intent,
    SignedTransaction,
    TransferIntent,
    UnsignedTransaction,
    WithdrawalIntent,
)
from begin_cli.errors import BeginCliError, ErrorKind, input_error
from begin_cli.wallet import bech32
from begin_cli.wallet.keystore import SigningHandle
from begin_cli.wallet.networks import Network, NetworkId

logger = logging.getLogger("begin_cli.core.sdk")


class ChainSDK(Protocol):
    async def build(self, intent: Intent, sender: str) -> UnsignedTransaction:
        ...

    async def sign(self, unsigned: UnsignedTransaction, handle: SigningHandle) -> SignedTransaction:
        ...


def _import_pycardano():
    try:
        import pycardano
    except ImportError as exc:
        raise BeginCliError(
            ErrorKind.INPUT,
            "Building and signing transactions requires pycardano. "
            "Install it with: pip install 'begin-cli[cardano]'",
            code="MISSING_DEPENDENCY",
        ) from exc
    return pycardano


def _has_stake_parts(body) -> bool:
    """True when *body* certifies or withdraws, so the stake key must witness it."""
    return bool(body.certificates) or bool(body.withdraws)


class PyCardanoSDK:
    """pycardano-backed builder and signer.

    Parameters
    ----------
    network:
        Network the transactions are built for.
    api_key:
        Blockfrost project id used by pycardano's chain context for UTxO
        selection and protocol parameters.
    base_url:
        Optional Blockfrost endpoint override.
    """

    def __init__(self, network: Network, api_key: str, base_url: Optional[str] = None) -> None:
        self.network = network
        self.api_key = api_key
        self.base_url = base_url or network.blockfrost_url

    def _pc_network(self, pc):
        return pc.Network.MAINNET if self.network.network_id is NetworkId.MAINNET else pc.Network.TESTNET

    def _context(self):
        pc = _import_pycardano()
        # blockfrost-python appends the API version itself.
        base_url = self.base_url.rstrip("/").removesuffix("/v0")
        return pc.BlockFrostChainContext(self.api_key, network=self._pc_network(pc), base_url=base_url)

    async def build(self, intent: Intent, sender: str) -> UnsignedTransaction:
        return await asyncio.to_thread(self._build, intent, sender)

    def _build(self, intent: Intent, sender: str) -> UnsignedTransaction:
        if not isinstance(intent, (TransferIntent, DelegationIntent, WithdrawalIntent)):
            raise input_error(
                f"{intent.type} transactions are built by the swap aggregator, not locally",
                code="UNSUPPORTED_INTENT",
            )
        pc = _import_pycardano()
        builder = pc.TransactionBuilder(self._context())
        sender_address = pc.Address.from_primitive(sender)
        builder.add_input_address(sender_address)

        if isinstance(intent, TransferIntent):
            self._add_transfer(pc, builder, intent)
        elif isinstance(intent, DelegationIntent):
            self._add_delegation(pc, builder, intent, sender_address)
        else:
            self._add_withdrawal(pc, builder, intent, sender_address)

        try:
            body = builder.build(change_address=sender_address)
        except (pc.InsufficientUTxOBalanceException, pc.UTxOSelectionException) as exc:
            raise BeginCliError(
                ErrorKind.BUILD_FAILED,
                f"Insufficient funds: {exc}",
                code="INSUFFICIENT_FUNDS",
            ) from exc

        tx = pc.Transaction(body, pc.TransactionWitnessSet())
        logger.debug(f"Built {intent.type} transaction with fee {body.fee} lovelace")
        return UnsignedTransaction(cbor_hex=tx.to_cbor_hex(), intent=intent, fee=body.fee)

    @staticmethod
    def _add_transfer(pc, builder, intent: TransferIntent) -> None:
        amount = intent.lovelace
        if intent.assets:
            bundle: dict[bytes, dict[bytes, int]] = {}
            for asset in intent.assets:
                names = bundle.setdefault(bytes.fromhex(asset.policy_id), {})
                name = bytes.fromhex(asset.asset_name_hex)
                names[name] = names.get(name, 0) + asset.quantity
            amount = pc.Value(intent.lovelace, pc.MultiAsset.from_primitive(bundle))
        builder.add_output(pc.TransactionOutput(pc.Address.from_primitive(intent.to), amount))

    @staticmethod
    def _staking_part(sender_address):
        if sender_address.staking_part is None:
            raise input_error(
                "The sending address has no stake credential; use a base address wallet",
                code="NO_STAKE_KEY",
            )
        return sender_address.staking_part

    def _add_delegation(self, pc, builder, intent: DelegationIntent, sender_address) -> None:
        hrp, pool_hash = bech32.decode(intent.pool_id)
        if hrp != "pool":
            raise input_error(f"Invalid pool id: {intent.pool_id}", code="INVALID_POOL_ID")
        credential = pc.StakeCredential(self._staking_part(sender_address))
        certificates = []
        if intent.register:
            certificates.append(pc.StakeRegistration(credential))
        certificates.append(pc.StakeDelegation(credential, pc.PoolKeyHash(pool_hash)))
        builder.certificates = certificates

    def _add_withdrawal(self, pc, builder, intent: WithdrawalIntent, sender_address) -> None:
        reward_address = pc.Address(
            staking_part=self._staking_part(sender_address),
            network=self._pc_network(pc),
        )
        if str(reward_address) != intent.stake_address:
            raise input_error(
                f"{intent.stake_address} is not the stake address of this wallet",
                code="INVALID_ADDRESS",
            )
        builder.withdrawals = pc.Withdrawals({reward_address.to_primitive(): intent.lovelace})

    async def sign(self, unsigned: UnsignedTransaction, handle: SigningHandle) -> SignedTransaction:
        pc = _import_pycardano()
        tx = pc.Transaction.from_cbor(unsigned.cbor_hex)
        body_hash = tx.transaction_body.hash()

        keys = [pc.PaymentExtendedSigningKey(handle.payment_key().to_bytes())]
        if _has_stake_parts(tx.transaction_body):
            keys.append(pc.StakeExtendedSigningKey(handle.stake_key().to_bytes()))
        witnesses = [
            pc.VerificationKeyWitness(key.to_verification_key(), key.sign(body_hash))
            for key in keys
        ]

        # Aggregator-built payloads may already carry script witnesses.
        witness_set = tx.transaction_witness_set or pc.TransactionWitnessSet()
        witness_set.vkey_witnesses = list(witness_set.vkey_witnesses or []) + witnesses
        tx.transaction_witness_set = witness_set
        return SignedTransaction(
            cbor_hex=tx.to_cbor_hex(),
            tx_id=tx.id.payload.hex(),
            intent=unsigned.intent,
        )
