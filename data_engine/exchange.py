import ccxt.async_support as ccxt
import ccxt.pro as ccxtpro
from typing import Optional, Dict, Any, List
import logging
import time
from config import settings
from data_engine.models import OrderBook, OrderBookLevel, Trade
import logfire

logger = logging.getLogger(__name__)

# Initialize Performance Metrics
REQUEST_LATENCY_HISTOGRAM = logfire.metric_histogram(
    "exchange_request_duration_seconds",
    unit="s",
    description="Duration of requests to cryptocurrency exchanges"
)


class TransientFetchError(Exception):
    """Raised when an order book or trade fetch fails and may succeed later."""

    def __init__(self, exchange_id: str, symbol: str, operation: str, cause: Exception):
        self.exchange_id = exchange_id
        self.symbol = symbol
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed for {symbol} on {exchange_id}: {type(cause).__name__}: {cause}")


class ExchangeClient:
    """
    Async market data source for one exchange.

    Handles:
    - Streaming order books and trades through ccxt.pro when supported
    - REST polling fallback paced by the exchange rate limit
    - Synthetic market metadata for symbols the library does not list
    - Connection lifecycle management
    """

    def __init__(
        self,
        exchange_id: str,
        use_websocket: Optional[bool] = None,
    ):
        """
        Initialize exchange client.

        Args:
            exchange_id: Exchange identifier (e.g., 'binance', 'okx')
            use_websocket: Prefer ccxt.pro streaming (defaults to settings)
        """
        self.exchange_id = exchange_id
        self._markets_loaded = False
        self._synthetic_markets: List[Dict[str, Any]] = []
        self.last_request_latency_ms: Optional[float] = None

        if use_websocket is None:
            use_websocket = settings.use_websocket

        pro_class = getattr(ccxtpro, exchange_id, None) if use_websocket else None
        exchange_class = pro_class or getattr(ccxt, exchange_id, None)
        if exchange_class is None:
            raise ValueError(f"Unknown exchange: {exchange_id}")

        self.exchange: ccxt.Exchange = exchange_class({
            "enableRateLimit": settings.enable_rate_limit,
        })
        self.streaming = bool(pro_class) and bool(self.exchange.has.get("watchOrderBook"))
        if use_websocket and not self.streaming:
            logger.warning(f"[{exchange_id}] WebSocket streaming unavailable, falling back to REST polling")

    @property
    def poll_interval(self) -> float:
        """Seconds to wait between REST polls; zero when streaming."""
        if self.streaming:
            return 0.0
        rate_limit_ms = getattr(self.exchange, "rateLimit", 1000) or 1000
        # Small buffer over the advertised rate limit
        return max(rate_limit_ms / 1000.0, 0.2) * 1.1

    async def close(self):
        """Close exchange connection."""
        if self.exchange:
            await self.exchange.close()
            logger.info(f"[{self.exchange_id}] Connection closed")

    def register_market(self, market: Dict[str, Any]):
        """
        Extend the exchange with synthetic market metadata before first use.

        Missing ccxt market fields are filled in when the markets are merged.

        Args:
            market: Partial ccxt market dict with at least 'symbol', 'base' and 'quote'
        """
        missing = [key for key in ("symbol", "base", "quote") if not market.get(key)]
        if missing:
            raise ValueError(f"Synthetic market requires {', '.join(missing)}")
        self._synthetic_markets.append(dict(market))
        # Force the next fetch to merge it in
        self._markets_loaded = False

    async def ensure_markets_loaded(self):
        """Ensure market metadata is loaded before operations."""
        if self._markets_loaded:
            return
        try:
            await self.exchange.load_markets()
        except ccxt.BaseError as e:
            raise TransientFetchError(self.exchange_id, "*", "load_markets", e) from e

        if self._synthetic_markets:
            try:
                known = dict(self.exchange.markets or {})
                for market in self._synthetic_markets:
                    known[market["symbol"]] = self._market_structure(market)
                self.exchange.set_markets(list(known.values()))
            except (ccxt.BaseError, KeyError, TypeError, ValueError) as e:
                raise TransientFetchError(self.exchange_id, "*", "set_markets", e) from e
            logger.info(
                f"[{self.exchange_id}] Registered synthetic markets: "
                f"{', '.join(m['symbol'] for m in self._synthetic_markets)}"
            )
        self._markets_loaded = True

    def _market_structure(self, market: Dict[str, Any]) -> Dict[str, Any]:
        """Complete a partial market dict into the structure ccxt expects."""
        symbol = market["symbol"]
        market_type = market.get("type") or "spot"
        base = market.get("base")
        quote = market.get("quote")
        defaults = {
            "id": market.get("id") or symbol.replace("/", ""),
            "symbol": symbol,
            "baseId": base,
            "quoteId": quote,
            "type": market_type,
            "spot": market_type == "spot",
            "swap": market_type == "swap",
            "future": market_type == "future",
            "option": market_type == "option",
            "contract": market_type != "spot",
            "active": True,
        }
        return self.exchange.deep_extend(self.exchange.safe_market_structure(), defaults, market)

    async def fetch_order_book(self, symbol: str, limit: Optional[int] = None) -> OrderBook:
        """
        Get the next order book snapshot for a trading pair.

        Streams when supported, otherwise fetches over REST.

        Raises:
            TransientFetchError: On any exchange or network failure
        """
        await self.ensure_markets_loaded()
        operation = "watch_order_book" if self.streaming else "fetch_order_book"

        with logfire.span("fetch_order_book:{symbol}@{exchange}", symbol=symbol, exchange=self.exchange_id) as span:
            start_time = time.perf_counter()
            try:
                method = getattr(self.exchange, operation)
                raw_orderbook = await method(symbol, limit) if limit else await method(symbol)
            except ccxt.BaseError as e:
                span.record_exception(e)
                raise TransientFetchError(self.exchange_id, symbol, operation, e) from e
            self._record_latency(start_time, operation)

        bids = [
            OrderBookLevel(price=float(bid[0]), amount=float(bid[1]))
            for bid in raw_orderbook.get("bids", [])
        ]
        asks = [
            OrderBookLevel(price=float(ask[0]), amount=float(ask[1]))
            for ask in raw_orderbook.get("asks", [])
        ]

        return OrderBook(
            symbol=symbol,
            exchange=self.exchange_id,
            bids=bids,
            asks=asks,
        )

    async def fetch_trades(self, symbol: str) -> List[Trade]:
        """
        Get the next batch of public trades for a trading pair.

        Raises:
            TransientFetchError: On any exchange or network failure
        """
        await self.ensure_markets_loaded()
        streaming = self.streaming and bool(self.exchange.has.get("watchTrades"))
        operation = "watch_trades" if streaming else "fetch_trades"

        with logfire.span("fetch_trades:{symbol}@{exchange}", symbol=symbol, exchange=self.exchange_id) as span:
            start_time = time.perf_counter()
            try:
                raw_trades = await getattr(self.exchange, operation)(symbol)
            except ccxt.BaseError as e:
                span.record_exception(e)
                raise TransientFetchError(self.exchange_id, symbol, operation, e) from e
            self._record_latency(start_time, operation)

        return [
            Trade(
                symbol=symbol,
                timestamp=raw.get("timestamp"),
                price=raw.get("price"),
                amount=raw.get("amount"),
            )
            for raw in raw_trades or []
        ]

    def _record_latency(self, start_time: float, operation: str):
        duration = time.perf_counter() - start_time
        self.last_request_latency_ms = duration * 1000
        if settings.logfire_token:
            REQUEST_LATENCY_HISTOGRAM.record(duration, {"exchange": self.exchange_id, "operation": operation})
