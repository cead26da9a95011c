"""
Data models for market data and monitor output.

Uses Pydantic for type-safe data structures.
"""

from enum import Enum
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Tuple


class AlertKind(str, Enum):
    """Alert kinds tracked by the throttle table and episode state."""

    DEPTH_BID = "depth_bid"
    DEPTH_ASK = "depth_ask"
    SILENCE = "silence"


class OrderBookLevel(BaseModel):
    """Single level in order book (bid or ask)."""

    price: float = Field(..., description="Price level")
    amount: float = Field(..., description="Volume at this price level")

    @property
    def total_value(self) -> float:
        """Calculate total value (price * amount)."""
        return self.price * self.amount


class OrderBook(BaseModel):
    """Order book snapshot. Requested fresh on every iteration, never cached."""

    symbol: str = Field(..., description="Trading pair symbol (e.g., SOL/USDT)")
    exchange: str = Field(..., description="Exchange name")

    bids: List[OrderBookLevel] = Field(..., description="Buy orders (descending price)")
    asks: List[OrderBookLevel] = Field(..., description="Sell orders (ascending price)")

    @property
    def best_bid(self) -> Optional[OrderBookLevel]:
        """Get best bid (highest buy price)."""
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[OrderBookLevel]:
        """Get best ask (lowest sell price)."""
        return self.asks[0] if self.asks else None

    @property
    def is_two_sided(self) -> bool:
        return bool(self.bids) and bool(self.asks)

    @property
    def mid_price(self) -> Optional[float]:
        """Average of best bid and best ask."""
        if self.best_bid and self.best_ask:
            return (self.best_bid.price + self.best_ask.price) / 2
        return None

    def get_liquidity_at_percentage(self, side: str, percentage: float) -> Tuple[float, float]:
        """
        Calculate available liquidity within percentage of the mid price.

        Levels are assumed sorted (bids descending, asks ascending), so the
        walk stops at the first level outside the band.

        Args:
            side: 'bids' or 'asks'
            percentage: Percentage distance from mid price (e.g., 1.0 for 1%)

        Returns:
            Tuple of (total_volume, total_value) within the percentage range
        """
        mid_price = self.mid_price
        if mid_price is None:
            return 0.0, 0.0

        threshold = mid_price * (1 + percentage / 100) if side == "asks" else mid_price * (1 - percentage / 100)

        total_volume = 0.0
        total_value = 0.0

        levels = self.bids if side == "bids" else self.asks
        for level in levels:
            if (side == "bids" and level.price >= threshold) or (side == "asks" and level.price <= threshold):
                total_volume += level.amount
                total_value += level.total_value
            else:
                break

        return total_volume, total_value


class Trade(BaseModel):
    """Single public trade. Only the timestamp matters to the monitor."""

    symbol: str
    timestamp: Optional[int] = Field(None, description="Trade time in ms since epoch")
    price: Optional[float] = None
    amount: Optional[float] = None


class DepthSample(BaseModel):
    """Depth measured from one order book snapshot."""

    model_config = ConfigDict(frozen=True)

    exchange: str
    symbol: str
    timestamp: int = Field(..., description="Sample time in ms since epoch")
    bid_depth_value: float
    ask_depth_value: float
    mid_price: float
    bid_quantity: float
    ask_quantity: float


class AlertRecord(BaseModel):
    """An alert that fired."""

    model_config = ConfigDict(frozen=True)

    exchange: str
    symbol: str
    timestamp: int = Field(..., description="Alert time in ms since epoch")
    message: str
