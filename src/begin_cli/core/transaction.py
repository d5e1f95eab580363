"""Transaction intents, amount parsing and offline transaction files."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, ClassVar, Literal, Optional, Union

from begin_cli.errors import BeginCliError, ErrorKind, input_error, unsupported_format
from begin_cli.utils import atomic_write_text
from begin_cli.wallet import bech32
from begin_cli.wallet.address import is_valid_address

logger = logging.getLogger("begin_cli.core.transaction")

LOVELACE_PER_ADA = 1_000_000
TX_FILE_VERSION = 1

_POLICY_ID_RE = re.compile(r"^[0-9a-fA-F]{56}$")
_HEX_RE = re.compile(r"[0-9a-fA-F]+")


# ---------------------------------------------------------------------------
# Amounts and assets
# ---------------------------------------------------------------------------

def ada_to_lovelace(amount: str | int | Decimal) -> int:
    """Convert a positive ADA amount (at most 6 decimals) to lovelace."""
    text = str(amount).strip()
    try:
        if not text.isascii():
            raise InvalidOperation(text)
        value = Decimal(text)
    except InvalidOperation:
        raise input_error(f"Invalid amount: {amount}", code="INVALID_AMOUNT") from None
    if not value.is_finite() or value <= 0:
        raise input_error(f"Invalid amount: {amount}. Must be greater than 0.", code="INVALID_AMOUNT")
    lovelace = value * LOVELACE_PER_ADA
    if lovelace != lovelace.to_integral_value():
        raise input_error(
            f"Invalid amount: {amount}. ADA has at most 6 decimal places.", code="INVALID_AMOUNT"
        )
    return int(lovelace)


def lovelace_to_ada(lovelace: int) -> str:
    ada = Decimal(int(lovelace)) / LOVELACE_PER_ADA
    return f"{ada:.6f}"


@dataclass(frozen=True)
class Asset:
    """A native asset quantity; ``unit`` is policy id + hex asset name."""

    policy_id: str
    asset_name_hex: str
    quantity: int

    @property
    def unit(self) -> str:
        return self.policy_id + self.asset_name_hex

    def to_dict(self) -> dict[str, Any]:
        return {"unit": self.unit, "quantity": str(self.quantity)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Asset:
        unit = data["unit"]
        return cls(unit[:56], unit[56:], int(data["quantity"]))


def parse_asset(text: str) -> Asset:
    """Parse ``policyId.assetName:amount``; the asset name is UTF-8 and gets hex-encoded."""
    unit_part, sep, amount_str = text.partition(":")
    if not sep or not unit_part or not amount_str:
        raise input_error(
            f'Invalid asset format: {text}. Expected "policyId.assetName:amount"',
            code="INVALID_ASSET",
        )

    policy_id, _, asset_name = unit_part.partition(".")
    if not _POLICY_ID_RE.match(policy_id):
        raise input_error(
            f"Invalid policy ID: {policy_id}. Must be 56 hex characters.", code="INVALID_ASSET"
        )
    if not (amount_str.isascii() and amount_str.isdigit()) or int(amount_str) <= 0:
        raise input_error(
            f"Invalid amount: {amount_str}. Must be a positive integer.", code="INVALID_AMOUNT"
        )
    return Asset(policy_id.lower(), asset_name.encode("utf-8").hex(), int(amount_str))


# ---------------------------------------------------------------------------
# Intents and payloads
# ---------------------------------------------------------------------------

# Key deposit taken when a stake credential is registered.
STAKE_KEY_DEPOSIT = 2_000_000
POOL_HASH_SIZE = 28


def validate_pool_id(pool_id: str) -> str:
    """Check that *pool_id* is a bech32 ``pool1...`` id."""
    error = input_error(
        f"Invalid pool id: {pool_id}. Expected a bech32 pool1... id.", code="INVALID_POOL_ID"
    )
    try:
        hrp, payload = bech32.decode(pool_id)
    except BeginCliError:
        raise error from None
    if hrp != "pool" or len(payload) != POOL_HASH_SIZE:
        raise error
    return pool_id


@dataclass(frozen=True)
class TransferIntent:
    """What the operator asked to send."""

    to: str
    lovelace: int
    assets: tuple[Asset, ...] = ()

    type: ClassVar[str] = "transfer"

    @property
    def recipient(self) -> str:
        return self.to

    @classmethod
    def create(
        cls,
        to: str,
        amount_ada: str | int | Decimal,
        assets: list[str] | None = None,
        network: Any = None,
    ) -> TransferIntent:
        """Validate operator input into an intent; raises input errors."""
        if not is_valid_address(to, network):
            raise input_error(f"Invalid recipient address: {to}", code="INVALID_ADDRESS")
        return cls(
            to=to,
            lovelace=ada_to_lovelace(amount_ada),
            assets=tuple(parse_asset(a) for a in assets or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "to": self.to,
            "lovelace": str(self.lovelace),
            "assets": [a.to_dict() for a in self.assets],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransferIntent:
        return cls(
            to=data["to"],
            lovelace=int(data["lovelace"]),
            assets=tuple(Asset.from_dict(a) for a in data.get("assets", [])),
        )


@dataclass(frozen=True)
class DelegationIntent:
    """Delegate the wallet's stake credential to a pool, registering it first if needed."""

    stake_address: str
    pool_id: str
    register: bool = False

    type: ClassVar[str] = "delegation"

    @property
    def recipient(self) -> str:
        return self.pool_id

    @property
    def lovelace(self) -> int:
        return STAKE_KEY_DEPOSIT if self.register else 0

    @classmethod
    def create(cls, stake_address: str, pool_id: str, register: bool = False) -> DelegationIntent:
        validate_pool_id(pool_id)
        return cls(stake_address=stake_address, pool_id=pool_id, register=register)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "stakeAddress": self.stake_address,
            "poolId": self.pool_id,
            "register": self.register,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DelegationIntent:
        return cls(
            stake_address=data["stakeAddress"],
            pool_id=data["poolId"],
            register=bool(data.get("register", False)),
        )


@dataclass(frozen=True)
class WithdrawalIntent:
    """Withdraw the full reward balance of a stake address."""

    stake_address: str
    lovelace: int

    type: ClassVar[str] = "withdrawal"

    @property
    def recipient(self) -> str:
        return self.stake_address

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "stakeAddress": self.stake_address,
            "lovelace": str(self.lovelace),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WithdrawalIntent:
        return cls(stake_address=data["stakeAddress"], lovelace=int(data["lovelace"]))


@dataclass(frozen=True)
class SwapIntent:
    """A quoted aggregator swap; amounts are decimal strings in token units."""

    token_in: str
    token_out: str
    amount: str
    slippage: float
    min_amount_out: str
    amount_out: str = ""
    allow_multi_hops: bool = True

    type: ClassVar[str] = "swap"

    @property
    def recipient(self) -> str:
        return self.token_out

    @property
    def lovelace(self) -> int:
        if self.token_in != "lovelace":
            return 0
        try:
            return int(Decimal(self.amount) * LOVELACE_PER_ADA)
        except InvalidOperation:
            return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "amount": self.amount,
            "slippage": self.slippage,
            "minAmountOut": self.min_amount_out,
            "amountOut": self.amount_out,
            "allowMultiHops": self.allow_multi_hops,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SwapIntent:
        return cls(
            token_in=data["tokenIn"],
            token_out=data["tokenOut"],
            amount=str(data["amount"]),
            slippage=float(data["slippage"]),
            min_amount_out=str(data["minAmountOut"]),
            amount_out=str(data.get("amountOut", "")),
            allow_multi_hops=bool(data.get("allowMultiHops", True)),
        )


@dataclass(frozen=True)
class CancelOrdersIntent:
    """Cancel pending aggregator orders by id."""

    order_ids: tuple[str, ...]

    type: ClassVar[str] = "cancel_orders"
    lovelace: ClassVar[int] = 0

    @property
    def recipient(self) -> Optional[str]:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "orderIds": list(self.order_ids)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CancelOrdersIntent:
        order_ids = data["orderIds"]
        if not isinstance(order_ids, list):
            raise TypeError("orderIds must be a list")
        return cls(order_ids=tuple(str(i) for i in order_ids))


Intent = Union[TransferIntent, DelegationIntent, WithdrawalIntent, SwapIntent, CancelOrdersIntent]

INTENT_TYPES: dict[str, type] = {
    cls.type: cls
    for cls in (TransferIntent, DelegationIntent, WithdrawalIntent, SwapIntent, CancelOrdersIntent)
}


def intent_from_dict(data: dict[str, Any]) -> Intent:
    """Rebuild any intent from its ``to_dict`` form; untyped dicts are transfers."""
    kind = data.get("type", TransferIntent.type)
    try:
        cls = INTENT_TYPES[kind]
    except KeyError:
        raise ValueError(f"unknown intent type {kind!r}") from None
    return cls.from_dict(data)


@dataclass(frozen=True)
class UnsignedTransaction:
    cbor_hex: str
    intent: Optional[Intent] = None
    fee: Optional[int] = None

    @property
    def digest(self) -> str:
        """Identity of the payload (not the on-chain id)."""
        return hashlib.sha256(bytes.fromhex(self.cbor_hex)).hexdigest()


@dataclass(frozen=True)
class SignedTransaction:
    cbor_hex: str
    tx_id: str
    intent: Optional[Intent] = None


@dataclass
class TxFile:
    """On-disk form of an offline payload."""

    kind: Literal["unsigned", "signed"]
    network: str
    cbor_hex: str
    tx_id: Optional[str] = None
    intent: Optional[Intent] = None
    fee: Optional[int] = None

    def to_json(self) -> str:
        data: dict[str, Any] = {
            "version": TX_FILE_VERSION,
            "kind": self.kind,
            "network": self.network,
            "cborHex": self.cbor_hex,
        }
        if self.tx_id:
            data["txId"] = self.tx_id
        if self.fee is not None:
            data["fee"] = str(self.fee)
        if self.intent is not None:
            data["intent"] = self.intent.to_dict()
        return json.dumps(data, indent=2)

    @classmethod
    def from_json(
        cls,
        text: str,
        source: str = "<string>",
        bare_kind: Literal["unsigned", "signed"] = "unsigned",
    ) -> TxFile:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # A bare CBOR hex string, as written by other tools.
            cbor = text.strip()
            if not _HEX_RE.fullmatch(cbor or "x"):
                raise unsupported_format(f"{source} is neither a transaction file nor CBOR hex") from None
            return cls(kind=bare_kind, network="", cbor_hex=cbor)

        if not isinstance(data, dict) or data.get("version") != TX_FILE_VERSION:
            raise unsupported_format(f"{source} has an unsupported transaction file format")
        if data.get("kind") not in ("unsigned", "signed") or not data.get("cborHex"):
            raise unsupported_format(f"{source} is missing the transaction kind or payload")
        cbor_hex, tx_id = data["cborHex"], data.get("txId")
        if not isinstance(cbor_hex, str) or not _HEX_RE.fullmatch(cbor_hex):
            raise unsupported_format(f"{source} has a payload that is not CBOR hex")
        if tx_id is not None and not isinstance(tx_id, str):
            raise unsupported_format(f"{source} has a malformed transaction id")
        try:
            intent = intent_from_dict(data["intent"]) if data.get("intent") else None
            fee = int(data["fee"]) if data.get("fee") is not None else None
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise unsupported_format(f"{source} has a malformed intent or fee: {exc}") from exc
        return cls(
            kind=data["kind"],
            network=str(data.get("network") or ""),
            cbor_hex=cbor_hex,
            tx_id=tx_id,
            intent=intent,
            fee=fee,
        )


def save_tx_file(tx_file: TxFile, path: Path) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_text(path, tx_file.to_json() + "\n")
    except OSError as exc:
        raise input_error(
            f"Could not write transaction file {path}: {exc.strerror or exc}",
            code="FILE_WRITE_FAILED",
        ) from exc
    logger.info(f"Saved {tx_file.kind} transaction to {path}")
    return path


def load_tx_file(path: Path, expected: Literal["unsigned", "signed"]) -> TxFile:
    path = Path(path)
    if not path.exists():
        raise input_error(f"Transaction file not found: {path}", code="FILE_NOT_FOUND")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        raise unsupported_format(f"{path} is not a text transaction file") from None
    except OSError as exc:
        raise input_error(
            f"Could not read transaction file {path}: {exc.strerror or exc}",
            code="FILE_READ_FAILED",
        ) from exc
    # Bare hex files carry no kind; trust the caller.
    tx_file = TxFile.from_json(text, str(path), bare_kind=expected)
    if tx_file.kind != expected:
        raise BeginCliError(
            ErrorKind.INPUT,
            f"{path} holds a {tx_file.kind} transaction, expected {expected}",
            code="INVALID_TX_FILE",
        )
    return tx_file


def default_unsigned_path(directory: Path | None = None) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return (directory or Path.cwd()) / f"tx-{stamp}.unsigned"


def default_signed_path(unsigned_path: Path) -> Path:
    """``payment.unsigned`` becomes ``payment.signed``; anything else gets ``.signed`` appended."""
    unsigned_path = Path(unsigned_path)
    if unsigned_path.suffix == ".unsigned":
        return unsigned_path.with_suffix(".signed")
    return unsigned_path.with_name(unsigned_path.name + ".signed")
