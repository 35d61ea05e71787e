"""Market quote tool backed by the Yahoo Finance chart endpoint."""

from __future__ import annotations

from typing import Any

import httpx

from toolchat.models import ToolCategory
from toolchat.tools.base import Tool, failure

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"


def _yahoo_symbol(symbol: str) -> str:
    # Forex pairs are written EUR/USD by users and EURUSD=X by Yahoo.
    if "/" in symbol:
        base, quote = symbol.split("/", 1)
        return f"{base}{quote}=X"
    return symbol


class StockPriceTool(Tool):
    """Latest price and daily change for a stock, crypto or forex symbol."""

    id = "stock_data"
    name = "get_stock_price"
    display_name = "Stock Data"
    description = "Get the current price and daily change for a stock, cryptocurrency, or forex pair."
    category = ToolCategory.ANALYSIS
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "symbol": {
                "type": "string",
                "description": 'Ticker symbol, e.g. "AAPL", "BTC-USD" or "EUR/USD".',
            },
        },
        "required": ["symbol"],
    }

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        symbol = str(kwargs["symbol"]).strip().upper()

        async with httpx.AsyncClient() as client:
            resp = await client.get(
                YAHOO_CHART_URL.format(symbol=_yahoo_symbol(symbol)),
                params={"interval": "1d", "range": "1d"},
                headers={"User-Agent": "Mozilla/5.0"},
                timeout=15.0,
            )
        if resp.status_code == 404:
            return failure(f"Unknown symbol: {symbol}")
        if resp.status_code != 200:
            return failure(f"Quote lookup failed (HTTP {resp.status_code}).")

        results = (resp.json().get("chart") or {}).get("result") or []
        if not results:
            return failure(f"Unknown symbol: {symbol}")
        meta = results[0]["meta"]
        price = float(meta["regularMarketPrice"])
        previous = float(meta.get("chartPreviousClose") or meta.get("previousClose") or price)
        change = price - previous
        return {
            "success": True,
            "symbol": symbol,
            "price": round(price, 4),
            "currency": meta.get("currency", "USD"),
            "change": round(change, 4),
            "change_percent": f"{(change / previous * 100) if previous else 0.0:.2f}%",
            "exchange": meta.get("exchangeName"),
        }
