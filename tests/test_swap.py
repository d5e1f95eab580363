"""
Tests for begin_cli.core.swap: token resolution, quote checks and
aggregator-built transactions.
"""

from __future__ import annotations

import json
import unittest

import httpx
import pytest

from begin_cli.core.lifecycle import TransactionLifecycle, TxState
from begin_cli.core.swap import (
    KNOWN_TOKENS,
    AggregatorSDK,
    ResolvedToken,
    format_route,
    parse_fee,
    price_impact_level,
    resolve_pair,
    resolve_token,
    validate_slippage,
    validate_swap_amount,
)
from begin_cli.core.transaction import CancelOrdersIntent, SwapIntent
from begin_cli.errors import BeginCliError, ErrorKind
from begin_cli.net.retry import RetryPolicy
from begin_cli.services.minswap import MinswapClient, RouteLeg

from tests.conftest import TEST_PASSWORD, TESTNET_BASE, UNSIGNED_CBOR, FakeProvider, FakeSDK, RecordingSleep

NO_RETRY = RetryPolicy(max_retries=0, base_delay=0.01, max_delay=0.01, jitter=0.0)
POLICY = "29d222ce763455e3d7a09a665ce554f00ac89d2e99a1a83d267170c6"
SUNDAE = "9a9693a9a37912a5097918f97918d15240c92ab729a0b7c4aa144d77" + "53554e444145"


def _minswap(handler, calls=None):
    def recording(request):
        if calls is not None:
            calls.append(request)
        return handler(request)

    return MinswapClient("preprod", policy=NO_RETRY, sleep=RecordingSleep(), transport=httpx.MockTransport(recording))


def _tokens(*tokens):
    return lambda request: httpx.Response(200, json={"tokens": list(tokens)})


# ═══════════════════════════════════════════════════════════════════
#  Quote checks
# ═══════════════════════════════════════════════════════════════════

class TestQuoteChecks(unittest.TestCase):

    def test_slippage_bounds(self):
        self.assertEqual(validate_slippage(0.01), 0.01)
        self.assertEqual(validate_slippage(50), 50)
        for bad in (0, 0.001, 50.5, -1):
            with self.assertRaises(BeginCliError) as ctx:
                validate_slippage(bad)
            self.assertEqual(ctx.exception.code, "INVALID_SLIPPAGE")
            self.assertIs(ctx.exception.kind, ErrorKind.INPUT)

    def test_swap_amount(self):
        self.assertEqual(validate_swap_amount(" 12.50 "), "12.50")
        self.assertEqual(validate_swap_amount("1e2"), "100")
        for bad in ("0", "-3", "abc", "NaN", "Infinity", "", "\u0665"):
            with self.assertRaises(BeginCliError) as ctx:
                validate_swap_amount(bad)
            self.assertEqual(ctx.exception.code, "INVALID_AMOUNT")

    def test_price_impact_levels(self):
        self.assertEqual(price_impact_level(0.01), "ok")
        self.assertEqual(price_impact_level(0.05), "ok")
        self.assertEqual(price_impact_level(0.08), "high")
        self.assertEqual(price_impact_level(0.2), "critical")

    def test_fee_text(self):
        self.assertEqual(parse_fee("170000"), 170_000)
        self.assertEqual(parse_fee("0.85"), 850_000)
        self.assertIsNone(parse_fee("about two ADA"))
        self.assertIsNone(parse_fee("\u0661\u0662"))

    def test_route_description(self):
        ada = ResolvedToken("lovelace", "ADA", "Cardano", 6, True)
        mint = ResolvedToken(KNOWN_TOKENS["MIN"], "MIN", "MIN", 6, True)
        leg = RouteLeg("minswap_v2", "p1", "lovelace", "min", "1", "8")
        other = RouteLeg("SundaeSwap", "p2", "min", "x", "8", "9")

        self.assertEqual(format_route([], ada, mint), "ADA -> MIN (direct)")
        self.assertEqual(format_route([leg], ada, mint), "ADA -> MIN via Minswap V2")
        self.assertEqual(format_route([leg, other], ada, mint), "ADA -> Minswap V2 -> SundaeSwap -> MIN")


# ═══════════════════════════════════════════════════════════════════
#  Token resolution
# ═══════════════════════════════════════════════════════════════════

class TestResolveToken:

    @pytest.mark.asyncio
    async def test_known_tickers_resolve_offline(self):
        ada = await resolve_token("ada")
        assert ada.token_id == "lovelace"
        assert ada.ticker == "ADA"
        assert ada.decimals == 6

        snek = await resolve_token("SNEK")
        assert snek.token_id == KNOWN_TOKENS["SNEK"]
        assert snek.decimals == 0
        assert snek.verified

    @pytest.mark.asyncio
    async def test_policy_and_name(self):
        token = await resolve_token(f"{POLICY}.MIN")
        assert token.token_id == POLICY + "4d494e"
        assert token.ticker == "MIN"
        assert not token.verified

    @pytest.mark.asyncio
    async def test_bad_policy(self):
        with pytest.raises(BeginCliError) as exc_info:
            await resolve_token("abc123.MIN")
        assert exc_info.value.code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_unknown_ticker_offline(self):
        with pytest.raises(BeginCliError) as exc_info:
            await resolve_token("NOPE")
        assert exc_info.value.code == "UNKNOWN_TOKEN"

    @pytest.mark.asyncio
    async def test_search_prefers_exact_ticker(self):
        calls = []
        client = _minswap(
            _tokens(
                {"token_id": "aa" * 28, "ticker": "SUNDAEX", "name": "Imitation", "decimals": 0},
                {"token_id": SUNDAE, "ticker": "SUNDAE", "name": "SundaeSwap", "decimals": 6, "verified": True},
            ),
            calls,
        )
        try:
            token = await resolve_token("sundae", client)
        finally:
            await client.aclose()

        assert token.token_id == SUNDAE
        assert token.decimals == 6
        assert json.loads(calls[0].content) == {"query": "sundae", "only_verified": True}

    @pytest.mark.asyncio
    async def test_search_without_results(self):
        client = _minswap(_tokens())
        try:
            with pytest.raises(BeginCliError) as exc_info:
                await resolve_token("NOPE", client)
        finally:
            await client.aclose()
        assert exc_info.value.code == "UNKNOWN_TOKEN"

    @pytest.mark.asyncio
    async def test_token_id_lookup(self):
        calls = []
        client = _minswap(
            _tokens({"token_id": SUNDAE, "ticker": "SUNDAE", "name": "SundaeSwap", "decimals": 6}), calls
        )
        try:
            token = await resolve_token(SUNDAE, client)
        finally:
            await client.aclose()
        assert token.ticker == "SUNDAE"
        assert json.loads(calls[0].content)["assets"] == [SUNDAE]

    @pytest.mark.asyncio
    async def test_token_id_when_lookup_fails(self):
        client = _minswap(lambda request: httpx.Response(500))
        try:
            token = await resolve_token(SUNDAE.upper(), client)
        finally:
            await client.aclose()
        assert token.token_id == SUNDAE
        assert token.name == "Unknown Token"

    @pytest.mark.asyncio
    async def test_pair_of_the_same_token(self):
        with pytest.raises(BeginCliError) as exc_info:
            await resolve_pair("ADA", "lovelace")
        assert exc_info.value.code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_pair(self):
        sell, buy = await resolve_pair("ADA", "MIN")
        assert (sell.ticker, buy.ticker) == ("ADA", "MIN")


# ═══════════════════════════════════════════════════════════════════
#  Aggregator-built transactions
# ═══════════════════════════════════════════════════════════════════

SWAP = SwapIntent(
    token_in="lovelace",
    token_out=KNOWN_TOKENS["MIN"],
    amount="100",
    slippage=0.5,
    min_amount_out="808.4",
    amount_out="812.5",
)


def _built_tx(seen):
    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"cbor": UNSIGNED_CBOR, "estimated_fee": "0.21"})

    return handler


class TestAggregatorSDK:

    @pytest.mark.asyncio
    async def test_swap_is_built_remotely(self):
        seen = []
        local = FakeSDK()
        client = _minswap(_built_tx(seen))
        try:
            unsigned = await AggregatorSDK(client, local).build(SWAP, TESTNET_BASE)
        finally:
            await client.aclose()

        path, body = seen[0]
        assert path.endswith("/build-tx")
        assert body["sender"] == TESTNET_BASE
        assert body["min_amount_out"] == "808.4"
        assert body["estimate"]["token_out"] == KNOWN_TOKENS["MIN"]
        assert unsigned.cbor_hex == UNSIGNED_CBOR
        assert unsigned.intent == SWAP
        assert unsigned.fee == 210_000
        assert local.calls == []

    @pytest.mark.asyncio
    async def test_cancel_is_built_remotely(self):
        seen = []
        client = _minswap(_built_tx(seen))
        try:
            unsigned = await AggregatorSDK(client, FakeSDK()).build(
                CancelOrdersIntent(order_ids=("order-1",)), TESTNET_BASE
            )
        finally:
            await client.aclose()
        assert seen[0][0].endswith("/cancel-tx")
        assert seen[0][1]["order_ids"] == ["order-1"]
        assert unsigned.intent.order_ids == ("order-1",)

    @pytest.mark.asyncio
    async def test_other_intents_are_built_locally(self, intent):
        calls = []
        local = FakeSDK()
        client = _minswap(lambda request: httpx.Response(500), calls)
        sdk = AggregatorSDK(client, local)
        try:
            unsigned = await sdk.build(intent, TESTNET_BASE)
        finally:
            await client.aclose()
        assert calls == []
        assert local.built == [(intent, TESTNET_BASE)]
        assert unsigned.intent == intent

    @pytest.mark.asyncio
    async def test_swap_through_the_lifecycle(self, preprod, manager_with_wallet):
        seen = []
        local, provider = FakeSDK(), FakeProvider()
        client = _minswap(_built_tx(seen))
        lifecycle = TransactionLifecycle(
            preprod,
            wallets=manager_with_wallet,
            sdk=AggregatorSDK(client, local),
            provider=provider,
            password_prompt=lambda wallet, attempt: TEST_PASSWORD,
            sleep=RecordingSleep(),
        )
        try:
            result = await lifecycle.send(SWAP)
        finally:
            await client.aclose()

        assert result.state is TxState.SUCCEEDED
        assert result.fee == 210_000
        assert local.signed[0].cbor_hex == UNSIGNED_CBOR
        assert provider.submitted == [UNSIGNED_CBOR + "00"]
        assert result.to_dict()["type"] == "swap"

    @pytest.mark.asyncio
    async def test_aggregator_outage_fails_the_build(self, preprod, manager_with_wallet):
        client = _minswap(lambda request: httpx.Response(503))
        lifecycle = TransactionLifecycle(
            preprod,
            wallets=manager_with_wallet,
            sdk=AggregatorSDK(client, FakeSDK()),
            provider=FakeProvider(),
            password_prompt=lambda wallet, attempt: TEST_PASSWORD,
            sleep=RecordingSleep(),
        )
        try:
            result = await lifecycle.send(SWAP)
        finally:
            await client.aclose()
        assert result.state is TxState.FAILED
        assert result.error.stage == "building"
