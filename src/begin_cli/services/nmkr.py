"""NMKR Studio API client for minting NFTs from a project."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Mapping, Optional

import httpx

from begin_cli.config import MintConfig
from begin_cli.errors import input_error
from begin_cli.net.retry import RetryingClient, RetryPolicy, Sleep, unexpected_response

DEFAULT_BASE_URL = "https://studio-api.nmkr.io/v2"


class NmkrClient:
    def __init__(
        self,
        api_key: str,
        project_uid: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.project_uid = project_uid
        self._http = RetryingClient(
            base_url,
            service="NMKR",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            policy=policy,
            sleep=sleep,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: MintConfig,
        env: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> NmkrClient:
        """Build a client from ``NMKR_API_KEY`` / ``NMKR_PROJECT_UID`` or the config file."""
        env = os.environ if env is None else env
        api_key = env.get("NMKR_API_KEY") or config.api_key
        project_uid = env.get("NMKR_PROJECT_UID") or config.project_uid
        if not api_key or not project_uid:
            raise input_error(
                "NMKR_API_KEY and NMKR_PROJECT_UID are required for minting",
                code="MISSING_ARGUMENT",
            )
        return cls(api_key, project_uid, **kwargs)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def project_details(self) -> dict[str, Any]:
        return await self._http.get_json(f"/GetProjectDetails/{self.project_uid}")

    async def nft_details(self, nft_uid: str) -> dict[str, Any]:
        return await self._http.get_json(f"/GetNftDetailsById/{nft_uid}")

    async def mint_and_send(self, nft_uid: str, receiver: str, token_count: int = 1) -> dict[str, Any]:
        """Mint *token_count* of an uploaded NFT straight to *receiver*.

        Returns ``{"tx_id", "state", "nft_uid"}``; ``tx_id`` may be empty
        while NMKR is still processing.
        """
        data = await self._http.post_json(
            f"/MintAndSendSpecific/{self.project_uid}/{nft_uid}/{token_count}/{receiver}"
        )
        if not isinstance(data, dict):
            raise unexpected_response("NMKR", TypeError(f"expected an object, got {type(data).__name__}"))
        return {
            "tx_id": str(data.get("txHash") or data.get("sendedTransaction") or ""),
            "state": str(data.get("state") or ""),
            "nft_uid": str(data.get("nftUid") or nft_uid),
        }
