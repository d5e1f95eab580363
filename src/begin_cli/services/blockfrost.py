"""Blockfrost chain data provider.

Address lookups, UTxO listing, transaction submission and status polling,
stake account and pool queries, all routed through the retrying HTTP
client.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from begin_cli.errors import BeginCliError, ErrorKind
from begin_cli.net.retry import RetryingClient, RetryPolicy, Sleep, decode_json, unexpected_response
from begin_cli.wallet.networks import Network

logger = logging.getLogger("begin_cli.services.blockfrost")

PAGE_SIZE = 100
POOL_SCAN_SIZE = 100

# Fields read from Blockfrost bodies; anything else wrong with a body is a provider fault.
_PARSE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


@dataclass(frozen=True)
class ConfirmationStatus:
    tx_id: str
    confirmed: bool
    confirmations: Optional[int] = None
    block_height: Optional[int] = None


@dataclass
class AddressInfo:
    address: str
    lovelace: int
    assets: dict[str, int] = field(default_factory=dict)
    stake_address: Optional[str] = None


@dataclass
class StakePool:
    """A stake pool with its registered metadata.

    ``margin`` and ``saturation`` are percentages.
    """

    pool_id: str
    ticker: str
    name: str
    description: str = ""
    homepage: str = ""
    pledge: int = 0
    cost: int = 0
    margin: float = 0.0
    saturation: float = 0.0
    blocks_minted: int = 0
    live_stake: int = 0
    live_delegators: int = 0
    retiring_epoch: Optional[int] = None


@dataclass
class DelegationStatus:
    stake_address: str
    registered: bool
    pool_id: Optional[str] = None
    active_epoch: Optional[int] = None
    rewards_available: int = 0
    total_withdrawn: int = 0
    controlled_amount: int = 0


def _amounts(entries: list[dict[str, Any]]) -> tuple[int, dict[str, int]]:
    lovelace = 0
    assets: dict[str, int] = {}
    for entry in entries:
        unit = entry.get("unit")
        quantity = int(entry.get("quantity", 0))
        if unit == "lovelace":
            lovelace += quantity
        elif unit:
            assets[unit] = assets.get(unit, 0) + quantity
    return lovelace, assets


def _pool_from(data: dict[str, Any], metadata: Optional[dict[str, Any]]) -> StakePool:
    metadata = metadata or {}
    pool_id = data["pool_id"]
    retirement = data.get("retirement") or []
    return StakePool(
        pool_id=pool_id,
        ticker=metadata.get("ticker") or "N/A",
        name=metadata.get("name") or pool_id[:20] + "...",
        description=metadata.get("description") or "",
        homepage=metadata.get("homepage") or "",
        pledge=int(data.get("live_pledge") or data.get("declared_pledge") or 0),
        cost=int(data.get("fixed_cost") or 0),
        margin=float(data.get("margin_cost") or 0) * 100,
        saturation=float(data.get("live_saturation") or 0) * 100,
        blocks_minted=int(data.get("blocks_minted") or 0),
        live_stake=int(data.get("live_stake") or 0),
        live_delegators=int(data.get("live_delegators") or 0),
        retiring_epoch=int(retirement[-1]) if retirement else None,
    )


class BlockfrostClient:
    """Blockfrost REST API client for one network.

    Parameters
    ----------
    network:
        Target network; selects the endpoint.
    api_key:
        Blockfrost project id, sent as the ``project_id`` header.
    base_url:
        Endpoint override (e.g. a self-hosted instance).
    """

    def __init__(
        self,
        network: Network,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.network = network
        self._http = RetryingClient(
            base_url or network.blockfrost_url,
            service="Blockfrost",
            headers={"project_id": api_key},
            policy=policy,
            sleep=sleep,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> BlockfrostClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get_optional(self, path: str, **kwargs: Any) -> Any:
        """GET *path*; a 404 yields ``None``."""
        try:
            return await self._http.get_json(path, **kwargs)
        except BeginCliError as exc:
            if exc.status == 404:
                return None
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def address_info(self, address: str) -> AddressInfo:
        """Balance of *address*; an unused address reports zero."""
        data = await self._get_optional(f"/addresses/{address}")
        if data is None:
            return AddressInfo(address=address, lovelace=0)
        try:
            lovelace, assets = _amounts(data.get("amount", []))
            stake_address = data.get("stake_address")
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Blockfrost", exc) from exc
        return AddressInfo(
            address=address,
            lovelace=lovelace,
            assets=assets,
            stake_address=stake_address,
        )

    async def utxos(self, address: str) -> list[dict[str, Any]]:
        """All UTxOs at *address*, following pagination."""
        results: list[dict[str, Any]] = []
        page = 1
        while True:
            batch = await self._get_optional(
                f"/addresses/{address}/utxos",
                params={"page": page, "count": PAGE_SIZE},
            )
            if batch is None:
                break
            if not isinstance(batch, list):
                raise unexpected_response("Blockfrost", TypeError("UTxO page is not a list"))
            results.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            page += 1
        return results

    async def protocol_parameters(self) -> dict[str, Any]:
        return await self._http.get_json("/epochs/latest/parameters")

    async def latest_block(self) -> dict[str, Any]:
        return await self._http.get_json("/blocks/latest")

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    async def account(self, stake_address: str) -> DelegationStatus:
        """Delegation state of *stake_address*; an unknown key is unregistered."""
        data = await self._get_optional(f"/accounts/{stake_address}")
        if data is None:
            return DelegationStatus(stake_address=stake_address, registered=False)
        try:
            return DelegationStatus(
                stake_address=stake_address,
                registered=bool(data.get("active")),
                pool_id=data.get("pool_id"),
                active_epoch=data.get("active_epoch"),
                rewards_available=int(data.get("withdrawable_amount") or 0),
                total_withdrawn=int(data.get("withdrawals_sum") or 0),
                controlled_amount=int(data.get("controlled_amount") or 0),
            )
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Blockfrost", exc) from exc

    async def pool(self, pool_id: str) -> Optional[StakePool]:
        """Details of one pool, or ``None`` if Blockfrost does not know it."""
        data, metadata = await asyncio.gather(
            self._get_optional(f"/pools/{pool_id}"),
            self._get_optional(f"/pools/{pool_id}/metadata"),
        )
        if data is None:
            return None
        if not isinstance(metadata, dict):
            metadata = None
        try:
            return _pool_from(data, metadata)
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Blockfrost", exc) from exc

    async def _pool_ids(self, count: int) -> list[str]:
        ids = await self._http.get_json("/pools", params={"count": count, "order": "desc"})
        if not isinstance(ids, list):
            raise unexpected_response("Blockfrost", TypeError("pool list is not a list"))
        return [str(pool_id) for pool_id in ids]

    async def pools(self, limit: int = 10) -> list[StakePool]:
        """The most recently registered pools, with details."""
        results: list[StakePool] = []
        for pool_id in (await self._pool_ids(limit * 2))[:limit]:
            pool = await self._pool_or_skip(pool_id)
            if pool is not None:
                results.append(pool)
        return results

    async def search_pools(self, query: str, limit: int = 10) -> list[StakePool]:
        """Pools whose ticker or name contains *query*.

        A ``pool1...`` id is looked up directly.  Blockfrost has no ticker
        search, so otherwise a window of registered pools is scanned.
        """
        if query.lower().startswith("pool1"):
            pool = await self.pool(query)
            return [pool] if pool else []

        needle = query.lower()
        results: list[StakePool] = []
        for pool_id in await self._pool_ids(POOL_SCAN_SIZE):
            if len(results) >= limit:
                break
            pool = await self._pool_or_skip(pool_id)
            if pool and (needle in pool.ticker.lower() or needle in pool.name.lower()):
                results.append(pool)
        return results

    async def _pool_or_skip(self, pool_id: str) -> Optional[StakePool]:
        try:
            return await self.pool(pool_id)
        except BeginCliError as exc:
            if exc.retryable:
                raise
            logger.warning(f"Skipping pool {pool_id}: {exc.message}")
            return None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def submit_tx(self, cbor_hex: str) -> str:
        """Submit a signed transaction and return its id."""
        try:
            payload = bytes.fromhex(cbor_hex)
        except ValueError:
            raise BeginCliError(
                ErrorKind.INPUT, "Signed transaction is not valid hex CBOR", code="INVALID_TX"
            ) from None
        response = await self._http.request(
            "POST",
            "/tx/submit",
            content=payload,
            headers={"Content-Type": "application/cbor"},
        )
        tx_id = decode_json(response, "Blockfrost")
        if not isinstance(tx_id, str) or not tx_id:
            raise unexpected_response("Blockfrost", TypeError(f"transaction id {tx_id!r} is not a string"))
        logger.info(f"Submitted transaction {tx_id} to {self.network.name}")
        return tx_id

    async def tx_status(self, tx_id: str) -> ConfirmationStatus:
        """On-chain status of *tx_id*; an unknown transaction is unconfirmed."""
        tx = await self._get_optional(f"/txs/{tx_id}")
        if tx is None:
            return ConfirmationStatus(tx_id=tx_id, confirmed=False)

        try:
            height = tx.get("block_height")
            confirmations = None
            if height is not None:
                tip = await self.latest_block()
                if tip.get("height") is not None:
                    confirmations = max(1, int(tip["height"]) - int(height) + 1)
        except _PARSE_ERRORS as exc:
            raise unexpected_response("Blockfrost", exc) from exc
        return ConfirmationStatus(
            tx_id=tx_id,
            confirmed=True,
            confirmations=confirmations,
            block_height=height,
        )
