from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .. import UpstreamError
from ..config import HTTP_TIMEOUT_SECONDS, get_aura_api_url
from ..core import logger


class AuraClient:
    """Thin async client for the AURA portfolio and trade API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.base_url = (base_url or get_aura_api_url()).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.logger = logger.bind(component="AuraClient")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        kwargs: Dict[str, Any] = {"params": params, "json": json}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            resp = await self._client.request(method, url, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            self.logger.warning(
                "AURA request rejected", path=path, status=exc.response.status_code
            )
            raise UpstreamError(
                f"AURA API returned HTTP {exc.response.status_code} for {path}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning("AURA request failed", path=path, error=str(exc))
            raise UpstreamError(f"AURA API request failed: {exc}") from exc

    async def get_balances(self, address: str, *, timeout: float | None = None) -> Dict[str, Any]:
        return await self._request(
            "GET", "/portfolio/balances", params={"address": address}, timeout=timeout
        )

    async def get_strategies(self, address: str) -> Dict[str, Any]:
        return await self._request(
            "GET", "/portfolio/strategies", params={"address": address}
        )

    async def trade_quote(
        self, from_token: str, to_token: str, amount: str, slippage: float
    ) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/trade/quote",
            params={
                "fromToken": from_token,
                "toToken": to_token,
                "amount": amount,
                "slippage": slippage,
            },
        )

    async def trade_execute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/trade/execute", json=payload)
