"""
Monitor declarations.

Loads the JSON file listing which (exchange, symbol) pairs are watched and
with which thresholds.
"""

import json
from pathlib import Path
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class ConfigError(Exception):
    """Raised when the monitor configuration cannot be loaded or is invalid."""
    pass


class DepthConfig(BaseModel):
    """Depth thresholds for one symbol."""

    model_config = ConfigDict(populate_by_name=True)

    percentage: float = Field(..., gt=0, description="Band around mid price, in percent")
    min_value: float = Field(..., ge=0, alias="minValue", description="Minimum quote value inside the band")
    duration: float = Field(0, ge=0, description="Seconds a breach must last before the first alert")


class TradeSilenceConfig(BaseModel):
    """Trade silence threshold for one symbol."""

    model_config = ConfigDict(populate_by_name=True)

    max_silence_time: float = Field(..., gt=0, alias="maxSilenceTime", description="Seconds without trades")


class SyntheticMarket(BaseModel):
    """
    Market metadata for a symbol the exchange library does not list.

    Extra ccxt market keys (precision, limits, ...) are passed through as-is.
    """

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(None, description="Exchange-native market id (defaults to BASEQUOTE)")
    base: str = Field(..., min_length=1)
    quote: str = Field(..., min_length=1)
    type: Literal["spot", "swap", "future", "option"] = "spot"


class MonitorEntry(BaseModel):
    """One monitored (exchange, symbol) pair."""

    model_config = ConfigDict(populate_by_name=True)

    exchange: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    depth: Optional[DepthConfig] = None
    trade_silence: Optional[TradeSilenceConfig] = Field(None, alias="tradeSilence")
    notification_interval: float = Field(
        0,
        alias="notificationInterval",
        description="Minutes between two alerts of the same kind (0 disables throttling)"
    )
    market: Optional[SyntheticMarket] = Field(
        None,
        description="Synthetic market metadata for symbols the exchange library does not list"
    )

    @model_validator(mode="after")
    def _requires_a_check(self) -> "MonitorEntry":
        if self.depth is None and self.trade_silence is None:
            raise ValueError(
                f"{self.exchange} {self.symbol}: at least one of 'depth' or 'tradeSilence' is required"
            )
        return self


class MonitorsConfig(BaseModel):
    """Top level of the monitor declaration file."""

    monitors: List[MonitorEntry] = Field(default_factory=list)

    @property
    def exchanges(self) -> List[str]:
        """Distinct exchange ids, in declaration order."""
        return list(dict.fromkeys(entry.exchange for entry in self.monitors))

    def for_exchange(self, exchange_id: str) -> List[MonitorEntry]:
        return [entry for entry in self.monitors if entry.exchange == exchange_id]


def load_monitor_config(path: Union[str, Path]) -> MonitorsConfig:
    """
    Load and validate the monitor declaration file.

    Args:
        path: Path to the JSON file

    Returns:
        Validated MonitorsConfig

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Monitor config not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read monitor config {path}: {e}") from e

    try:
        config = MonitorsConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid monitor config {path}: {e}") from e

    if not config.monitors:
        raise ConfigError(f"Monitor config {path} declares no monitors")
    return config
