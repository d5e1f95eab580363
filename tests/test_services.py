"""
Tests for the remote service clients (Blockfrost, Minswap, NMKR) against
``httpx.MockTransport``.
"""

from __future__ import annotations

import json

import httpx
import pytest

from begin_cli.config import MintConfig
from begin_cli.errors import BeginCliError, ErrorKind
from begin_cli.net.retry import RetryPolicy
from begin_cli.services.blockfrost import PAGE_SIZE, BlockfrostClient
from begin_cli.services.minswap import MinswapClient
from begin_cli.services.nmkr import NmkrClient
from begin_cli.wallet.networks import get_network

from tests.conftest import POOL_ID, TESTNET_BASE, TESTNET_STAKE, TX_ID, UNSIGNED_CBOR, RecordingSleep

FAST = RetryPolicy(max_retries=2, base_delay=0.01, max_delay=0.02, jitter=0.0)


def _blockfrost(handler, sleep=None):
    return BlockfrostClient(
        get_network("preprod"),
        "preprodKEY",
        policy=FAST,
        sleep=sleep or RecordingSleep(),
        transport=httpx.MockTransport(handler),
    )


# ═══════════════════════════════════════════════════════════════════
#  Blockfrost
# ═══════════════════════════════════════════════════════════════════

class TestBlockfrost:

    @pytest.mark.asyncio
    async def test_submit(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["project_id"] = request.headers["project_id"]
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json=TX_ID)

        async with _blockfrost(handler) as client:
            assert await client.submit_tx("84a0") == TX_ID
        assert seen["path"] == "/api/v0/tx/submit"
        assert seen["project_id"] == "preprodKEY"
        assert seen["content_type"] == "application/cbor"
        assert seen["body"] == bytes.fromhex("84a0")

    @pytest.mark.asyncio
    async def test_submit_rejects_bad_hex(self):
        async with _blockfrost(lambda r: httpx.Response(200)) as client:
            with pytest.raises(BeginCliError) as exc_info:
                await client.submit_tx("not-hex")
        assert exc_info.value.code == "INVALID_TX"

    @pytest.mark.asyncio
    async def test_submit_rejected_by_node_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"message": "ValueNotConservedUTxO"})

        async with _blockfrost(handler) as client:
            with pytest.raises(BeginCliError) as exc_info:
                await client.submit_tx("84a0")
        assert len(calls) == 1
        assert "ValueNotConservedUTxO" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_tx_status_unknown(self):
        async with _blockfrost(lambda r: httpx.Response(404, json={"message": "Not found"})) as client:
            status = await client.tx_status(TX_ID)
        assert not status.confirmed
        assert status.confirmations is None

    @pytest.mark.asyncio
    async def test_tx_status_confirmed(self):
        def handler(request):
            if request.url.path.endswith(f"/txs/{TX_ID}"):
                return httpx.Response(200, json={"hash": TX_ID, "block_height": 100})
            if request.url.path.endswith("/blocks/latest"):
                return httpx.Response(200, json={"height": 104})
            return httpx.Response(404)

        async with _blockfrost(handler) as client:
            status = await client.tx_status(TX_ID)
        assert status.confirmed
        assert status.confirmations == 5
        assert status.block_height == 100

    @pytest.mark.asyncio
    async def test_address_info(self):
        body = {
            "address": TESTNET_BASE,
            "amount": [
                {"unit": "lovelace", "quantity": "4500000"},
                {"unit": "ab" * 28 + "746f6b656e", "quantity": "7"},
            ],
            "stake_address": "stake_test1xyz",
        }
        async with _blockfrost(lambda r: httpx.Response(200, json=body)) as client:
            info = await client.address_info(TESTNET_BASE)
        assert info.lovelace == 4_500_000
        assert info.assets == {"ab" * 28 + "746f6b656e": 7}
        assert info.stake_address == "stake_test1xyz"

    @pytest.mark.asyncio
    async def test_unused_address_is_empty(self):
        async with _blockfrost(lambda r: httpx.Response(404)) as client:
            info = await client.address_info(TESTNET_BASE)
        assert info.lovelace == 0
        assert info.assets == {}

    @pytest.mark.asyncio
    async def test_utxos_follow_pages(self):
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            size = PAGE_SIZE if page == 1 else 3
            return httpx.Response(200, json=[{"tx_hash": f"{page}-{i}"} for i in range(size)])

        async with _blockfrost(handler) as client:
            utxos = await client.utxos(TESTNET_BASE)
        assert pages == [1, 2]
        assert len(utxos) == PAGE_SIZE + 3

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self):
        responses = iter([httpx.Response(429), httpx.Response(200, json={"height": 1})])
        sleep = RecordingSleep()
        async with _blockfrost(lambda r: next(responses), sleep=sleep) as client:
            assert await client.latest_block() == {"height": 1}
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_protocol_parameters(self):
        def handler(request):
            assert request.url.path == "/api/v0/epochs/latest/parameters"
            return httpx.Response(200, json={"min_fee_a": 44, "min_fee_b": 155381})

        async with _blockfrost(handler) as client:
            params = await client.protocol_parameters()
        assert params["min_fee_a"] == 44

    def test_base_url_override(self):
        client = BlockfrostClient(get_network("mainnet"), "k", base_url="http://localhost:3000/api/v0")
        assert str(client._http._client.base_url).startswith("http://localhost:3000")


# ═══════════════════════════════════════════════════════════════════
#  Minswap
# ═══════════════════════════════════════════════════════════════════

ESTIMATE = {
    "token_in": "lovelace",
    "token_out": "29d222ce763455e3d7a09a665ce554f00ac89d2e99a1a83d267170c64d494e",
    "amount_in": "100",
    "amount_out": "812.5",
    "min_amount_out": "808.4",
    "price_impact": 0.12,
    "aggregator_fee": "0.85",
    "route": [{
        "dex": "MinswapV2",
        "pool_id": "pool1",
        "token_in": "lovelace",
        "token_out": "min",
        "amount_in": "100",
        "amount_out": "812.5",
    }],
}


class TestMinswap:

    @pytest.mark.asyncio
    async def test_estimate(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=ESTIMATE)

        client = MinswapClient("mainnet", partner="begin", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            quote = await client.estimate("lovelace", ESTIMATE["token_out"], "100", 0.5)
        finally:
            await client.aclose()

        assert seen["path"] == "/api/v1/estimate"
        assert seen["body"]["amount"] == "100"
        assert seen["body"]["slippage"] == 0.5
        assert seen["body"]["partner"] == "begin"
        assert quote.amount_out == "812.5"
        assert quote.price_impact == pytest.approx(0.12)
        assert [leg.dex for leg in quote.route] == ["MinswapV2"]

    @pytest.mark.asyncio
    async def test_ada_price(self):
        def handler(request):
            assert request.url.params["currency"] == "eur"
            return httpx.Response(200, json={"price": 0.4})

        client = MinswapClient("preprod", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            assert await client.ada_price("eur") == {"price": 0.4}
        finally:
            await client.aclose()

    def test_preview_unsupported(self):
        with pytest.raises(BeginCliError) as exc_info:
            MinswapClient("preview")
        assert exc_info.value.code == "INVALID_NETWORK"


# ═══════════════════════════════════════════════════════════════════
#  NMKR
# ═══════════════════════════════════════════════════════════════════

class TestNmkr:

    def test_from_config_requires_credentials(self):
        with pytest.raises(BeginCliError) as exc_info:
            NmkrClient.from_config(MintConfig(), env={})
        assert exc_info.value.kind is ErrorKind.INPUT
        assert exc_info.value.code == "MISSING_ARGUMENT"

    def test_env_overrides_config(self):
        client = NmkrClient.from_config(
            MintConfig(api_key="file", project_uid="file-project"),
            env={"NMKR_PROJECT_UID": "env-project"},
        )
        assert client.project_uid == "env-project"

    @pytest.mark.asyncio
    async def test_nft_details(self):
        def handler(request):
            assert request.url.path == "/v2/GetNftDetailsById/nft-1"
            return httpx.Response(200, json={"uid": "nft-1", "state": "free"})

        client = NmkrClient("secret", "proj-1", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            assert (await client.nft_details("nft-1"))["state"] == "free"
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_mint_and_send(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"state": "Minted", "txHash": TX_ID, "nftUid": "nft-1"})

        client = NmkrClient("secret", "proj-1", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            result = await client.mint_and_send("nft-1", TESTNET_BASE, 2)
        finally:
            await client.aclose()

        assert seen["path"] == f"/v2/MintAndSendSpecific/proj-1/nft-1/2/{TESTNET_BASE}"
        assert seen["auth"] == "Bearer secret"
        assert result == {"tx_id": TX_ID, "state": "Minted", "nft_uid": "nft-1"}


# ═══════════════════════════════════════════════════════════════════
#  Malformed bodies
# ═══════════════════════════════════════════════════════════════════

class TestMalformedBodies:

    @pytest.mark.asyncio
    async def test_html_body_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="<html>gateway</html>")

        async with _blockfrost(handler) as client:
            with pytest.raises(BeginCliError) as exc_info:
                await client.latest_block()
        assert len(calls) == 1
        assert exc_info.value.code == "INVALID_RESPONSE"
        assert exc_info.value.kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_non_json_submit_response(self):
        async with _blockfrost(lambda r: httpx.Response(200, text="ok")) as client:
            with pytest.raises(BeginCliError) as exc_info:
                await client.submit_tx("84a0")
        assert exc_info.value.code == "INVALID_RESPONSE"

    @pytest.mark.asyncio
    async def test_estimate_missing_fields(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"amount_out": "1"})

        client = MinswapClient("mainnet", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(BeginCliError) as exc_info:
                await client.estimate("lovelace", ESTIMATE["token_out"], "100", 0.5)
        finally:
            await client.aclose()
        assert len(calls) == 1
        assert exc_info.value.code == "INVALID_RESPONSE"
        assert "KeyError" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_token_list_in_wrong_shape(self):
        client = MinswapClient(
            "mainnet", policy=FAST, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=["MIN"]))
        )
        try:
            with pytest.raises(BeginCliError) as exc_info:
                await client.search_tokens("min")
        finally:
            await client.aclose()
        assert exc_info.value.code == "INVALID_RESPONSE"

    @pytest.mark.asyncio
    async def test_built_tx_without_cbor(self):
        client = MinswapClient(
            "mainnet", policy=FAST, transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"cbor": ""}))
        )
        try:
            with pytest.raises(BeginCliError) as exc_info:
                await client.build_cancel_tx(TESTNET_BASE, ["order-1"])
        finally:
            await client.aclose()
        assert exc_info.value.code == "INVALID_RESPONSE"

    @pytest.mark.asyncio
    async def test_nmkr_list_body(self):
        client = NmkrClient(
            "secret", "proj-1", policy=FAST, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[]))
        )
        try:
            with pytest.raises(BeginCliError) as exc_info:
                await client.mint_and_send("nft-1", TESTNET_BASE)
        finally:
            await client.aclose()
        assert exc_info.value.code == "INVALID_RESPONSE"


# ═══════════════════════════════════════════════════════════════════
#  Staking queries
# ═══════════════════════════════════════════════════════════════════

POOL_BODY = {
    "pool_id": POOL_ID,
    "live_pledge": "100000000000",
    "fixed_cost": "340000000",
    "margin_cost": 0.015,
    "live_saturation": 0.42,
    "blocks_minted": 1200,
    "live_stake": "30000000000000",
    "live_delegators": 800,
    "retirement": [],
}


def _pool_handler(request):
    path = request.url.path
    if path == "/api/v0/pools":
        return httpx.Response(200, json=["pool1other", POOL_ID])
    if path == f"/api/v0/pools/{POOL_ID}/metadata":
        return httpx.Response(200, json={"ticker": "BEGIN", "name": "Begin Pool"})
    if path == f"/api/v0/pools/{POOL_ID}":
        return httpx.Response(200, json=POOL_BODY)
    return httpx.Response(404, json={"message": "Not found"})


class TestStakingQueries:

    @pytest.mark.asyncio
    async def test_unknown_account_is_unregistered(self):
        async with _blockfrost(lambda r: httpx.Response(404)) as client:
            status = await client.account(TESTNET_STAKE)
        assert not status.registered
        assert status.rewards_available == 0

    @pytest.mark.asyncio
    async def test_account(self):
        body = {
            "active": True,
            "pool_id": POOL_ID,
            "active_epoch": 412,
            "withdrawable_amount": "4200000",
            "withdrawals_sum": "1000000",
            "controlled_amount": "90000000",
        }

        def handler(request):
            assert request.url.path == f"/api/v0/accounts/{TESTNET_STAKE}"
            return httpx.Response(200, json=body)

        async with _blockfrost(handler) as client:
            status = await client.account(TESTNET_STAKE)
        assert status.registered
        assert status.pool_id == POOL_ID
        assert status.rewards_available == 4_200_000
        assert status.controlled_amount == 90_000_000

    @pytest.mark.asyncio
    async def test_pool(self):
        async with _blockfrost(_pool_handler) as client:
            pool = await client.pool(POOL_ID)
        assert pool.ticker == "BEGIN"
        assert pool.margin == pytest.approx(1.5)
        assert pool.saturation == pytest.approx(42.0)
        assert pool.cost == 340_000_000
        assert pool.retiring_epoch is None

    @pytest.mark.asyncio
    async def test_unknown_pool(self):
        async with _blockfrost(lambda r: httpx.Response(404)) as client:
            assert await client.pool(POOL_ID) is None

    @pytest.mark.asyncio
    async def test_search_by_ticker_skips_unknown_pools(self):
        async with _blockfrost(_pool_handler) as client:
            pools = await client.search_pools("begin")
        assert [p.pool_id for p in pools] == [POOL_ID]

    @pytest.mark.asyncio
    async def test_search_by_pool_id(self):
        async with _blockfrost(_pool_handler) as client:
            pools = await client.search_pools(POOL_ID)
        assert [p.name for p in pools] == ["Begin Pool"]


# ═══════════════════════════════════════════════════════════════════
#  Aggregator transactions
# ═══════════════════════════════════════════════════════════════════

class TestAggregatorTransactions:

    @pytest.mark.asyncio
    async def test_build_swap_tx(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"cbor": UNSIGNED_CBOR, "estimated_fee": "0.2"})

        client = MinswapClient("mainnet", partner="begin", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            built = await client.build_swap_tx(TESTNET_BASE, "lovelace", ESTIMATE["token_out"], "100", 0.5, "808.4")
        finally:
            await client.aclose()

        assert seen["path"] == "/api/v1/build-tx"
        assert seen["body"]["sender"] == TESTNET_BASE
        assert seen["body"]["min_amount_out"] == "808.4"
        assert seen["body"]["estimate"]["partner"] == "begin"
        assert built.cbor == UNSIGNED_CBOR
        assert built.estimated_fee == "0.2"

    @pytest.mark.asyncio
    async def test_build_cancel_tx(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"cbor": UNSIGNED_CBOR})

        client = MinswapClient("preprod", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            built = await client.build_cancel_tx(TESTNET_BASE, ["order-1", "order-2"])
        finally:
            await client.aclose()

        assert seen["path"] == "/api/v1/cancel-tx"
        assert seen["body"] == {"sender": TESTNET_BASE, "order_ids": ["order-1", "order-2"]}
        assert built.estimated_fee == "0"

    @pytest.mark.asyncio
    async def test_pending_orders(self):
        def handler(request):
            assert request.url.params["owner_address"] == TESTNET_BASE
            return httpx.Response(200, json=[{
                "order_id": "order-1",
                "tx_hash": TX_ID,
                "dex": "MinswapV2",
                "token_in": "lovelace",
                "token_out": "min",
                "amount_in": 100,
                "min_amount_out": "808.4",
                "status": "PENDING",
            }])

        client = MinswapClient("mainnet", policy=FAST, transport=httpx.MockTransport(handler))
        try:
            orders = await client.pending_orders(TESTNET_BASE)
        finally:
            await client.aclose()
        assert [o.order_id for o in orders] == ["order-1"]
        assert orders[0].amount_in == "100"
