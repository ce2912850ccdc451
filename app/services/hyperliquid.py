"""Hyperliquid 数据源：vaultDetails / metaAndAssetCtxs"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)

HEADERS = {"Content-Type": "application/json"}


@dataclass(frozen=True)
class MarketContext:
    """全市场上下文（OI 加权资金费率、总 OI、24h 成交额）"""

    funding_rate: float
    open_interest: float
    volume_24h: float

    @classmethod
    def neutral(cls) -> "MarketContext":
        return cls(funding_rate=0.0, open_interest=0.0, volume_24h=0.0)


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def summarize_asset_contexts(asset_ctxs: list) -> MarketContext:
    """汇总各资产上下文：OI / 成交额求和，资金费率按 OI 加权"""
    total_oi = 0.0
    total_volume = 0.0
    weighted_funding = 0.0
    oi_for_weighting = 0.0

    for ctx in asset_ctxs:
        oi = _to_float(ctx.get("openInterest"))
        volume = _to_float(ctx.get("dayNtlVlm"))
        funding = _to_float(ctx.get("funding"))

        total_oi += oi
        total_volume += volume
        if oi > 0:
            weighted_funding += funding * oi
            oi_for_weighting += oi

    funding_rate = weighted_funding / oi_for_weighting if oi_for_weighting > 0 else 0.0
    return MarketContext(
        funding_rate=funding_rate,
        open_interest=total_oi,
        volume_24h=total_volume,
    )


class HyperliquidClient:
    def __init__(
        self,
        config: Settings = default_settings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = config.HYPERLIQUID_API_URL
        self.vault_address = config.VAULT_ADDRESS
        self.client = client or httpx.AsyncClient(
            timeout=config.HTTP_TIMEOUT,
            headers=HEADERS,
        )

    async def _post(self, body: Dict[str, Any]) -> Any:
        t_start = time.perf_counter()
        try:
            response = await self.client.post(self.api_url, json=body)
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Hyperliquid {body['type']} request failed: {e}") from e
        logger.debug("📡 Hyperliquid %s 耗时: %.2fs", body["type"], time.perf_counter() - t_start)

        if response.is_error:
            raise UpstreamFailure(
                f"Hyperliquid {body['type']} API error: {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFailure(f"Hyperliquid {body['type']} returned invalid JSON") from e

    async def fetch_vault_details(self) -> Dict[str, Any]:
        """获取 vault 详情原始数据（portfolio / apr / vlm / allowDeposits ...）"""
        data = await self._post({"type": "vaultDetails", "vaultAddress": self.vault_address})
        if not isinstance(data, dict) or "portfolio" not in data:
            raise UpstreamFailure("Hyperliquid vaultDetails payload missing portfolio")
        return data

    async def fetch_market_context(self) -> MarketContext:
        """获取市场上下文，响应为 [meta, assetCtxs]"""
        data = await self._post({"type": "metaAndAssetCtxs"})
        if not isinstance(data, list) or len(data) < 2 or not isinstance(data[1], list):
            raise UpstreamFailure("Hyperliquid metaAndAssetCtxs payload malformed")
        try:
            return summarize_asset_contexts(data[1])
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamFailure(f"Hyperliquid asset context malformed: {e}") from e

    async def close(self):
        await self.client.aclose()
