"""Swap helpers: token resolution, quote checks and the aggregator-backed SDK.

Swap and order-cancel transactions are assembled by the Minswap
aggregator.  :class:`AggregatorSDK` fetches them and hands signing to the
local SDK, so they run through the same lifecycle as a transfer.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from begin_cli.core.sdk import ChainSDK
from begin_cli.core.transaction import (
    CancelOrdersIntent,
    Intent,
    SignedTransaction,
    SwapIntent,
    UnsignedTransaction,
    ada_to_lovelace,
)
from begin_cli.errors import BeginCliError, input_error
from begin_cli.services.minswap import MinswapClient
from begin_cli.wallet.keystore import SigningHandle

logger = logging.getLogger("begin_cli.core.swap")

MIN_SLIPPAGE = 0.01
MAX_SLIPPAGE = 50.0

# Price impact is a fraction of the quoted price.
HIGH_PRICE_IMPACT = 0.05
CRITICAL_PRICE_IMPACT = 0.15

KNOWN_TOKENS: dict[str, str] = {
    "ADA": "lovelace",
    "LOVELACE": "lovelace",
    "MIN": "29d222ce763455e3d7a09a665ce554f00ac89d2e99a1a83d267170c64d494e",
    "IUSD": "f66d78b4a3cb3d37afa0ec36461e51ecbde00f26c8f0a68f94b6988069555344",
    "DJED": "8db269c3ec630e06ae29f74bc39edd1f87c819f1056206e879a1cd61446a65644d6963726f555344",
    "SHEN": "8db269c3ec630e06ae29f74bc39edd1f87c819f1056206e879a1cd615368656e4d6963726f555344",
    "WMT": "1d7f33bd23d85e1a25d87d86fac4f199c3197a2f7afeb662a0f34e1e776f726c646d6f62696c65746f6b656e",
    "HOSKY": "a0028f350aaabe0545fdcb56b039bfb08e4bb4d8c4d7c3c7d481c235484f534b59",
    "SNEK": "279c909f348e533da5808898f87f9a14bb2c3dfbbacccd631d927a3f534e454b",
}

TOKEN_DECIMALS: dict[str, int] = {
    "ADA": 6,
    "LOVELACE": 6,
    "MIN": 6,
    "IUSD": 6,
    "DJED": 6,
    "SHEN": 6,
    "WMT": 6,
    "HOSKY": 0,
    "SNEK": 0,
}

_TOKEN_ID_RE = re.compile(r"^[0-9a-fA-F]{56,}$")
_POLICY_ID_RE = re.compile(r"^[0-9a-fA-F]{56}$")

DEX_NAMES = {
    "minswap": "Minswap",
    "minswap_v2": "Minswap V2",
    "sundaeswap": "SundaeSwap",
    "wingriders": "WingRiders",
    "muesliswap": "MuesliSwap",
    "vyfinance": "VyFinance",
    "spectrum": "Spectrum",
}


@dataclass(frozen=True)
class ResolvedToken:
    token_id: str
    ticker: str
    name: str
    decimals: int = 0
    verified: bool = False


def validate_slippage(slippage: float) -> float:
    if not MIN_SLIPPAGE <= slippage <= MAX_SLIPPAGE:
        raise input_error(
            f"Slippage must be between {MIN_SLIPPAGE}% and {MAX_SLIPPAGE:g}%, got {slippage}%",
            code="INVALID_SLIPPAGE",
        )
    return slippage


def validate_swap_amount(amount: str) -> str:
    """A positive decimal amount, normalized to a plain string."""
    text = amount.strip()
    try:
        if not text.isascii():
            raise InvalidOperation(text)
        value = Decimal(text)
    except InvalidOperation:
        raise input_error(f"Invalid amount: {amount}", code="INVALID_AMOUNT") from None
    if not value.is_finite() or value <= 0:
        raise input_error(f"Invalid amount: {amount}. Must be greater than 0.", code="INVALID_AMOUNT")
    return format(value, "f")


def price_impact_level(price_impact: float) -> str:
    """``"critical"``, ``"high"`` or ``"ok"``."""
    if price_impact > CRITICAL_PRICE_IMPACT:
        return "critical"
    if price_impact > HIGH_PRICE_IMPACT:
        return "high"
    return "ok"


def dex_display_name(dex: str) -> str:
    return DEX_NAMES.get(dex.lower(), dex)


def format_route(route, token_in: ResolvedToken, token_out: ResolvedToken) -> str:
    if not route:
        return f"{token_in.ticker} -> {token_out.ticker} (direct)"
    if len(route) == 1:
        return f"{token_in.ticker} -> {token_out.ticker} via {dex_display_name(route[0].dex)}"
    steps = [token_in.ticker, *(dex_display_name(leg.dex) for leg in route), token_out.ticker]
    return " -> ".join(steps)


async def resolve_token(text: str, client: Optional[MinswapClient] = None) -> ResolvedToken:
    """Resolve a ticker, token id or ``policyId.assetName`` to a token.

    Known tickers resolve offline.  Unknown tickers are searched for
    through *client*.
    """
    text = text.strip()
    upper = text.upper()
    if upper in KNOWN_TOKENS:
        is_ada = KNOWN_TOKENS[upper] == "lovelace"
        return ResolvedToken(
            token_id=KNOWN_TOKENS[upper],
            ticker="ADA" if is_ada else upper,
            name="Cardano" if is_ada else upper,
            decimals=TOKEN_DECIMALS.get(upper, 6),
            verified=True,
        )

    if _TOKEN_ID_RE.match(text):
        if client is not None:
            try:
                tokens = await client.search_tokens("", only_verified=True, assets=[text])
            except BeginCliError as exc:
                logger.warning(f"Token lookup for {text} failed: {exc.message}")
            else:
                if tokens:
                    token = tokens[0]
                    return ResolvedToken(token.token_id, token.ticker, token.name, token.decimals, token.verified)
        return ResolvedToken(
            token_id=text.lower(),
            ticker=text[:8].upper() + "...",
            name="Unknown Token",
        )

    if "." in text:
        policy_id, _, asset_name = text.partition(".")
        if not _POLICY_ID_RE.match(policy_id):
            raise input_error(
                f"Invalid policy ID: {policy_id}. Must be 56 hex characters.", code="INVALID_TOKEN"
            )
        return ResolvedToken(
            token_id=policy_id.lower() + asset_name.encode("utf-8").hex(),
            ticker=asset_name.upper(),
            name=asset_name,
        )

    if client is not None and text:
        tokens = await client.search_tokens(text, only_verified=True)
        if tokens:
            token = next((t for t in tokens if t.ticker.upper() == upper), tokens[0])
            return ResolvedToken(token.token_id, token.ticker, token.name, token.decimals, token.verified)

    raise input_error(
        f"Unknown token: {text}. Use a known ticker (ADA, MIN, ...), a full token ID "
        'or "policyId.assetName".',
        code="UNKNOWN_TOKEN",
    )


async def resolve_pair(
    token_in: str, token_out: str, client: Optional[MinswapClient] = None
) -> tuple[ResolvedToken, ResolvedToken]:
    sell = await resolve_token(token_in, client)
    buy = await resolve_token(token_out, client)
    if sell.token_id == buy.token_id:
        raise input_error(f"Cannot swap {sell.ticker} for itself", code="INVALID_TOKEN")
    return sell, buy


def parse_fee(text: str) -> Optional[int]:
    """Aggregator fee estimate in lovelace; integers are lovelace, decimals ADA."""
    text = (text or "").strip()
    if text.isascii() and text.isdigit():
        return int(text)
    try:
        return ada_to_lovelace(text)
    except BeginCliError:
        return None


class AggregatorSDK:
    """Chain SDK that lets the aggregator build swaps and cancellations.

    Any other intent is built by *local*, which also does all signing.
    """

    def __init__(self, client: MinswapClient, local: ChainSDK) -> None:
        self.client = client
        self.local = local

    async def build(self, intent: Intent, sender: str) -> UnsignedTransaction:
        if isinstance(intent, SwapIntent):
            built = await self.client.build_swap_tx(
                sender,
                intent.token_in,
                intent.token_out,
                intent.amount,
                intent.slippage,
                intent.min_amount_out,
                intent.allow_multi_hops,
            )
        elif isinstance(intent, CancelOrdersIntent):
            built = await self.client.build_cancel_tx(sender, list(intent.order_ids))
        else:
            return await self.local.build(intent, sender)
        return UnsignedTransaction(
            cbor_hex=built.cbor, intent=intent, fee=parse_fee(built.estimated_fee)
        )

    async def sign(self, unsigned: UnsignedTransaction, handle: SigningHandle) -> SignedTransaction:
        return await self.local.sign(unsigned, handle)
