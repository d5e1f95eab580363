"""Minswap aggregator API client: quotes, swap and cancel transactions, orders."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from begin_cli.errors import input_error
from begin_cli.net.retry import RetryingClient, RetryPolicy, Sleep, unexpected_response

logger = logging.getLogger("begin_cli.services.minswap")

MINSWAP_API_URLS: dict[str, str] = {
    "mainnet": "https://aggregator.minswap.org/api/v1",
    "preprod": "https://preprod-aggregator.minswap.org/api/v1",
}

_PARSE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


@dataclass
class Token:
    token_id: str
    ticker: str
    name: str
    decimals: int = 0
    verified: bool = False


@dataclass
class RouteLeg:
    dex: str
    pool_id: str
    token_in: str
    token_out: str
    amount_in: str
    amount_out: str


@dataclass
class SwapEstimate:
    token_in: str
    token_out: str
    amount_in: str
    amount_out: str
    min_amount_out: str
    price_impact: float
    aggregator_fee: str
    route: list[RouteLeg] = field(default_factory=list)
    lp_fee: str = "0"
    dex_fee: str = "0"
    effective_price: str = ""
    inverse_price: str = ""


@dataclass
class BuiltTx:
    """An unsigned transaction assembled by the aggregator."""

    cbor: str
    estimated_fee: str


@dataclass
class PendingOrder:
    order_id: str
    tx_hash: str
    dex: str
    token_in: str
    token_out: str
    amount_in: str
    min_amount_out: str
    status: str


class MinswapClient:
    def __init__(
        self,
        network: str,
        *,
        partner: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if network not in MINSWAP_API_URLS:
            raise input_error(
                f"Swaps are not available on {network}. Use mainnet or preprod.",
                code="INVALID_NETWORK",
            )
        self.network = network
        self.partner = partner
        self._http = RetryingClient(
            MINSWAP_API_URLS[network],
            service="Minswap",
            headers={"Content-Type": "application/json"},
            policy=policy,
            sleep=sleep,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> MinswapClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def ada_price(self, currency: str = "usd") -> dict:
        """Current ADA price, e.g. ``{"price": 0.41, "change24h": -1.2}``."""
        return await self._http.get_json("/ada-price", params={"currency": currency})

    async def search_tokens(
        self,
        query: str = "",
        *,
        only_verified: bool = True,
        assets: Optional[list[str]] = None,
    ) -> list[Token]:
        body: dict[str, Any] = {"query": query, "only_verified": only_verified}
        if assets:
            body["assets"] = assets
        data = await self._http.post_json("/tokens", json=body)
        try:
            return [
                Token(
                    token_id=t["token_id"],
                    ticker=t.get("ticker") or "",
                    name=t.get("name") or "",
                    decimals=int(t.get("decimals") or 0),
                    verified=bool(t.get("verified")),
                )
                for t in data.get("tokens", [])
            ]
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Minswap", exc) from exc

    def _estimate_body(
        self, token_in: str, token_out: str, amount: str, slippage: float, allow_multi_hops: bool
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "token_in": token_in,
            "token_out": token_out,
            "amount": amount,
            "slippage": slippage,
            "allow_multi_hops": allow_multi_hops,
        }
        if self.partner:
            body["partner"] = self.partner
        return body

    async def estimate(
        self,
        token_in: str,
        token_out: str,
        amount: str,
        slippage: float,
        allow_multi_hops: bool = True,
    ) -> SwapEstimate:
        """Quote a swap of *amount* (in decimal units) of *token_in*."""
        body = self._estimate_body(token_in, token_out, amount, slippage, allow_multi_hops)
        body["amount_in_decimal"] = True

        data = await self._http.post_json("/estimate", json=body)
        try:
            return SwapEstimate(
                token_in=data["token_in"],
                token_out=data["token_out"],
                amount_in=str(data["amount_in"]),
                amount_out=str(data["amount_out"]),
                min_amount_out=str(data["min_amount_out"]),
                price_impact=float(data.get("price_impact") or data.get("avg_price_impact") or 0),
                aggregator_fee=str(data.get("aggregator_fee", "0")),
                lp_fee=str(data.get("lp_fee", "0")),
                dex_fee=str(data.get("dex_fee", "0")),
                effective_price=str(data.get("effective_price", "")),
                inverse_price=str(data.get("inverse_price", "")),
                route=[
                    RouteLeg(
                        dex=leg["dex"],
                        pool_id=leg["pool_id"],
                        token_in=leg["token_in"],
                        token_out=leg["token_out"],
                        amount_in=str(leg["amount_in"]),
                        amount_out=str(leg["amount_out"]),
                    )
                    for leg in data.get("route") or []
                ],
            )
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Minswap", exc) from exc

    async def build_swap_tx(
        self,
        sender: str,
        token_in: str,
        token_out: str,
        amount: str,
        slippage: float,
        min_amount_out: str,
        allow_multi_hops: bool = True,
    ) -> BuiltTx:
        """Have the aggregator build the unsigned swap transaction for *sender*."""
        body = {
            "sender": sender,
            "min_amount_out": min_amount_out,
            "estimate": self._estimate_body(token_in, token_out, amount, slippage, allow_multi_hops),
            "amount_in_decimal": True,
        }
        return self._built(await self._http.post_json("/build-tx", json=body))

    async def build_cancel_tx(self, sender: str, order_ids: list[str]) -> BuiltTx:
        data = await self._http.post_json(
            "/cancel-tx", json={"sender": sender, "order_ids": list(order_ids)}
        )
        return self._built(data)

    async def pending_orders(self, owner: str) -> list[PendingOrder]:
        data = await self._http.get_json(
            "/pending-orders", params={"owner_address": owner, "amount_in_decimal": "true"}
        )
        try:
            return [
                PendingOrder(
                    order_id=o["order_id"],
                    tx_hash=o.get("tx_hash") or "",
                    dex=o.get("dex") or "",
                    token_in=o.get("token_in") or "",
                    token_out=o.get("token_out") or "",
                    amount_in=str(o.get("amount_in", "")),
                    min_amount_out=str(o.get("min_amount_out", "")),
                    status=o.get("status") or "",
                )
                for o in data
            ]
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Minswap", exc) from exc

    @staticmethod
    def _built(data: Any) -> BuiltTx:
        try:
            cbor = data["cbor"]
            if not isinstance(cbor, str) or not cbor:
                raise ValueError("missing transaction CBOR")
            return BuiltTx(cbor=cbor, estimated_fee=str(data.get("estimated_fee") or "0"))
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Minswap", exc) from exc
