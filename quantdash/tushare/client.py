"""Tushare Pro async client.

Every call is a JSON POST of ``{api_name, token, params, fields}``; the
response carries ``{code, msg, data: {fields, items}}``.  Failures are
raised as classified ``DataFetchError`` so callers never see raw transport
exceptions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import httpx

from quantdash.config import Config
from quantdash.data.errors import DataFetchError, ErrorKind, error_from_message

logger = logging.getLogger("quantdash")


@dataclass(frozen=True)
class TushareTable:
    """Column-oriented table returned by Tushare."""

    fields: list[str] = field(default_factory=list)
    items: list[list[Any]] = field(default_factory=list)

    def rows(self) -> list[dict[str, Any]]:
        """Return the items as field-keyed dicts."""
        return [dict(zip(self.fields, item)) for item in self.items]

    def __len__(self) -> int:
        return len(self.items)


class TushareClient:
    """Async client wrapping the Tushare Pro HTTP API."""

    def __init__(self, config: Config) -> None:
        self._url = config.tushare_api_url
        self._token = config.tushare_token
        self._timeout = config.request_timeout_s

    @property
    def token(self) -> str:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token

    # ── Transport ────────────────────────────────────────────────────────

    async def request(
        self,
        api_name: str,
        params: dict[str, Any],
        fields: str = "",
    ) -> TushareTable:
        """Call one Tushare API and return its table.

        Raises:
            DataFetchError: ``auth`` without a token; ``network`` on transport
                failures and timeouts; ``api`` on unexpected HTTP status or an
                unreadable body; the kind classified from ``msg`` on a non-zero
                response code.
        """
        if not self._token:
            raise DataFetchError(ErrorKind.AUTH, "请先配置 Tushare Token")

        body = {
            "api_name": api_name,
            "token": self._token,
            "params": params,
            "fields": fields,
        }

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self._url,
                    json=body,
                    headers={"Content-Type": "application/json"},
                    timeout=self._timeout,
                )
        except httpx.TimeoutException as exc:
            logger.warning("Tushare %s timed out: %s", api_name, exc)
            raise DataFetchError(ErrorKind.NETWORK, "网络请求超时", detail=str(exc)) from exc
        except httpx.TransportError as exc:
            logger.warning("Tushare %s transport error: %s", api_name, exc)
            raise DataFetchError(ErrorKind.NETWORK, detail=str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("Tushare %s request failed: %s", api_name, exc)
            raise DataFetchError(ErrorKind.API, detail=str(exc)) from exc

        if resp.status_code != 200:
            raise DataFetchError(
                ErrorKind.API,
                detail=f"HTTP {resp.status_code}: 服务端异常",
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            logger.warning("Tushare %s returned a non-JSON body: %s", api_name, exc)
            raise DataFetchError(ErrorKind.API, detail="响应不是有效的 JSON") from exc
        if not isinstance(payload, dict):
            raise DataFetchError(ErrorKind.API, detail="响应格式异常")
        if payload.get("code") != 0:
            msg = payload.get("msg") or "Tushare API 返回错误"
            logger.warning("Tushare %s returned code %s: %s", api_name, payload.get("code"), msg)
            raise error_from_message(msg)

        data = payload.get("data") or {}
        return TushareTable(
            fields=list(data.get("fields") or []),
            items=list(data.get("items") or []),
        )

    # ── Price data ───────────────────────────────────────────────────────

    async def get_daily(self, ts_code: str, start_date: str, end_date: str) -> TushareTable:
        """Daily bars (vol in lots, amount in thousand yuan)."""
        return await self.request(
            "daily",
            {"ts_code": ts_code, "start_date": start_date, "end_date": end_date},
            "ts_code,trade_date,open,high,low,close,vol,amount",
        )

    async def get_minutes(
        self,
        ts_code: str,
        freq: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> TushareTable:
        params: dict[str, Any] = {"ts_code": ts_code, "freq": freq}
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date
        return await self.request(
            "stk_mins", params, "ts_code,trade_time,open,high,low,close,vol,amount"
        )

    async def get_realtime_daily(self, ts_code: str) -> TushareTable:
        """Today's intraday OHLCV snapshot (vol in shares, amount in yuan)."""
        return await self.request(
            "rt_k",
            {"ts_code": ts_code},
            "ts_code,name,open,high,low,close,vol,amount,pre_close,trade_time",
        )

    async def get_realtime_daily_batch(self, ts_codes: Sequence[str]) -> TushareTable:
        """Realtime snapshots for many stocks in one call (rt_k takes ~6000 codes)."""
        logger.info("Fetching rt_k for %d stocks", len(ts_codes))
        return await self.request(
            "rt_k",
            {"ts_code": ",".join(ts_codes)},
            "ts_code,name,open,high,low,close,vol,amount,pre_close,trade_time",
        )

    async def get_stock_basic(self) -> TushareTable:
        """All listed stocks."""
        return await self.request(
            "stock_basic",
            {"exchange": "", "list_status": "L"},
            "ts_code,symbol,name,area,industry,list_date",
        )

    # ── Market data ──────────────────────────────────────────────────────

    async def get_index_daily(self, ts_code: str, start_date: str, end_date: str) -> TushareTable:
        return await self.request(
            "index_daily",
            {"ts_code": ts_code, "start_date": start_date, "end_date": end_date},
            "ts_code,trade_date,open,high,low,close,pre_close,change,pct_chg,vol,amount",
        )

    async def get_daily_all(self, trade_date: str) -> TushareTable:
        """Every stock's daily bar for one trade date (market breadth)."""
        return await self.request(
            "daily",
            {"trade_date": trade_date},
            "ts_code,trade_date,open,high,low,close,pct_chg,vol,amount",
        )

    async def get_moneyflow_hsgt(self, start_date: str, end_date: str) -> TushareTable:
        return await self.request(
            "moneyflow_hsgt",
            {"start_date": start_date, "end_date": end_date},
            "trade_date,hgt,sgt,north_money,south_money",
        )

    async def get_daily_info(self, trade_date: str) -> TushareTable:
        return await self.request(
            "daily_info",
            {"trade_date": trade_date},
            "trade_date,ts_code,ts_name,com_count,total_mv,float_mv,amount,vol,trans_count,pe,tr,exchange",
        )

    async def get_margin(self, start_date: str, end_date: str) -> TushareTable:
        return await self.request(
            "margin",
            {"start_date": start_date, "end_date": end_date},
            "trade_date,exchange_id,rzye,rzmre,rzche,rqye,rzrqye",
        )
