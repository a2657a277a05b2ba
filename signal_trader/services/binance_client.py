"""Binance USD-M futures REST client (signed endpoints only)."""

import asyncio
import hashlib
import hmac
import json
import logging
import time
from typing import Any
from urllib.parse import urlencode

import aiohttp

from signal_trader.services.exchange import OrderResult, VenuePosition
from signal_trader.utils.errors import ExchangeError, ExchangeNotReadyError, RateLimitError, is_rate_limit_error
from signal_trader.utils.retry import retry

logger = logging.getLogger(__name__)

FUTURES_MAINNET = "https://fapi.binance.com"
FUTURES_TESTNET = "https://testnet.binancefuture.com"

RECV_WINDOW_MS = 5000
REQUEST_TIMEOUT_SECONDS = 15


class BinanceAPIError(ExchangeError):
    def __init__(self, status: int, code: int | None, msg: str | None, body: str):
        self.body = body
        self.msg = msg
        super().__init__(f"Binance API error (status={status}, code={code}, msg={msg})", status, code)


class BinanceRateLimitError(BinanceAPIError, RateLimitError):
    pass


def sign(query: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()


def _float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_quantity(quantity: float) -> str:
    # Plain decimal, never scientific notation
    return f"{quantity:.8f}".rstrip("0").rstrip(".")


class BinanceFuturesClient:
    def __init__(self, api_key: str, api_secret: str, testnet: bool = True, max_attempts: int = 3):
        self.api_key = api_key
        self.api_secret = api_secret
        self.testnet = testnet
        self.base_url = FUTURES_TESTNET if testnet else FUTURES_MAINNET
        self.max_attempts = max_attempts
        self._session: aiohttp.ClientSession | None = None
        self._lock = asyncio.Lock()
        logger.info(f"Binance futures client configured (testnet={testnet}, base_url={self.base_url})")

    def is_ready(self) -> bool:
        return bool(self.api_key and self.api_secret)

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
                )
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    async def _signed_request(self, method: str, path: str, params: dict[str, Any] | None = None) -> Any:
        if not self.is_ready():
            raise ExchangeNotReadyError("Binance API key/secret not configured")

        session = await self._get_session()
        params = dict(params or {})
        params["timestamp"] = int(time.time() * 1000)
        params["recvWindow"] = RECV_WINDOW_MS
        query = urlencode(params, doseq=True)
        query = f"{query}&signature={sign(query, self.api_secret)}"

        url = f"{self.base_url}{path}?{query}"
        async with session.request(method, url, headers={"X-MBX-APIKEY": self.api_key}) as resp:
            text = await resp.text()
            try:
                payload = json.loads(text) if text else None
            except json.JSONDecodeError:
                payload = text

            if resp.status >= 400:
                code = msg = None
                if isinstance(payload, dict):
                    code = payload.get("code")
                    msg = payload.get("msg")
                error_cls = BinanceRateLimitError if resp.status in (418, 429) else BinanceAPIError
                raise error_cls(resp.status, code, msg, text)
            return payload

    async def _request(self, method: str, path: str, params: dict[str, Any] | None = None) -> Any:
        return await retry(
            lambda: self._signed_request(method, path, params),
            max_attempts=self.max_attempts,
            retryable=is_rate_limit_error,
        )

    @staticmethod
    def _order_result(data: dict[str, Any]) -> OrderResult:
        return OrderResult(
            order_id=str(data.get("orderId")),
            symbol=data.get("symbol", ""),
            side=data.get("side", ""),
            type=data.get("type", ""),
            quantity=_float(data.get("origQty")) or 0.0,
            status=data.get("status", ""),
            executed_qty=_float(data.get("executedQty")),
            avg_price=_float(data.get("avgPrice")) or None,
            price=_float(data.get("stopPrice")) or _float(data.get("price")) or None,
        )

    async def set_leverage(self, symbol: str, leverage: float):
        logger.info(f"Setting leverage {symbol} -> {leverage}x")
        await self._request("POST", "/fapi/v1/leverage", {"symbol": symbol.upper(), "leverage": int(leverage)})

    async def place_market_order(self, symbol: str, side: str, quantity: float) -> OrderResult:
        logger.info(f"Placing market order {symbol} {side} qty={quantity}")
        data = await self._request("POST", "/fapi/v1/order", {
            "symbol": symbol.upper(),
            "side": side,
            "type": "MARKET",
            "quantity": _format_quantity(quantity),
            "newOrderRespType": "RESULT",
        })
        return self._order_result(data)

    async def _place_trigger_order(
        self, order_type: str, symbol: str, side: str, quantity: float, stop_price: float
    ) -> OrderResult:
        logger.info(f"Placing {order_type} {symbol} {side} qty={quantity} trigger={stop_price}")
        data = await self._request("POST", "/fapi/v1/order", {
            "symbol": symbol.upper(),
            "side": side,
            "type": order_type,
            "quantity": _format_quantity(quantity),
            "stopPrice": stop_price,
            "workingType": "MARK_PRICE",
            "reduceOnly": "true",
        })
        return self._order_result(data)

    async def place_stop_order(self, symbol: str, side: str, quantity: float, stop_price: float) -> OrderResult:
        return await self._place_trigger_order("STOP_MARKET", symbol, side, quantity, stop_price)

    async def place_take_profit_order(
        self, symbol: str, side: str, quantity: float, stop_price: float
    ) -> OrderResult:
        return await self._place_trigger_order("TAKE_PROFIT_MARKET", symbol, side, quantity, stop_price)

    async def get_position(self, symbol: str) -> VenuePosition | None:
        rows = await self._request("GET", "/fapi/v2/positionRisk", {"symbol": symbol.upper()})
        pos = rows[0] if rows else None
        if not pos or not _float(pos.get("positionAmt")):
            return None
        return VenuePosition(
            symbol=pos["symbol"],
            quantity=float(pos["positionAmt"]),
            entry_price=float(pos["entryPrice"]),
            mark_price=_float(pos.get("markPrice")),
            unrealized_pnl=_float(pos.get("unRealizedProfit")),
            leverage=_float(pos.get("leverage")),
        )

    async def close_position(self, symbol: str) -> OrderResult | None:
        position = await self.get_position(symbol)
        if position is None:
            logger.info(f"No venue position to close for {symbol}")
            return None
        side = "SELL" if position.quantity > 0 else "BUY"
        return await self.place_market_order(symbol, side, abs(position.quantity))
