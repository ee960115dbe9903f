"""
Core data model for the intraday research pipeline.

Bars and signals are produced by the data/pattern collaborators, exit signals
and screen decisions by the core, and trades plus directional statistics by
the trade loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

LONG = "long"
SHORT = "short"
DO_NOTHING = "do_nothing"
LLM_DECIDES = "llm_decides"

TRADE_DIRECTIONS = (LONG, SHORT)
LLM_ACTIONS = (LONG, SHORT, DO_NOTHING)


class ExitReason(str, Enum):
    """Why a position was closed."""
    STOP_LOSS = "stopLoss"
    PROFIT_TARGET = "profitTarget"
    TRAILING_STOP = "trailingStop"
    MAX_HOLD_TIME = "maxHoldTime"
    END_OF_DAY = "endOfDay"


def parse_timestamp(value: str | datetime) -> datetime:
    """Accept 'YYYY-MM-DD HH:MM[:SS]' or ISO strings."""
    if isinstance(value, datetime):
        return value
    text = str(value).strip().replace("T", " ")
    for fmt in (TIMESTAMP_FORMAT, "%Y-%m-%d %H:%M"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return datetime.fromisoformat(text)


@dataclass(frozen=True)
class Bar:
    """A single OHLCV observation."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: Optional[int] = None

    @property
    def trade_date(self) -> str:
        return self.timestamp.strftime(DATE_FORMAT)


@dataclass(frozen=True)
class Signal:
    """
    A candidate entry produced by pattern discovery.

    `price` is the entry price before any screening; `direction` is only a
    hint, the trade loop decides the working direction.
    """
    ticker: str
    timestamp: datetime
    price: float
    direction: Optional[str] = None
    rise_pct: Optional[float] = None
    type: str = "entry"

    @property
    def trade_date(self) -> str:
        return self.timestamp.strftime(DATE_FORMAT)

    @property
    def year(self) -> int:
        return self.timestamp.year

    @property
    def entry_time(self) -> str:
        return self.timestamp.strftime("%H:%M:%S")


@dataclass(frozen=True)
class ExitSignal:
    timestamp: datetime
    price: float
    reason: ExitReason
    type: str = "exit"


@dataclass(frozen=True)
class LLMResponse:
    """One model vote. Failed calls carry `error` and vote do_nothing."""
    action: str = DO_NOTHING
    rationalization: Optional[str] = None
    stop_loss: Optional[float] = None
    profit_target: Optional[float] = None
    confidence: Optional[float] = None
    cost: float = 0.0
    error: Optional[str] = None
    raw_text: Optional[str] = None


@dataclass(frozen=True)
class ScreenDecision:
    proceed: bool
    cost: float = 0.0
    direction: Optional[str] = None
    rationale: Optional[str] = None
    averaged_proposed_stop_loss: Optional[float] = None
    averaged_proposed_profit_target: Optional[float] = None
    responses: Optional[Tuple[LLMResponse, ...]] = None


@dataclass(frozen=True)
class Trade:
    """A confirmed, fully simulated trade."""
    ticker: str
    trade_date: str
    direction: str
    entry_time: datetime
    exit_time: datetime
    signal_price: float
    entry_price: float
    exit_price: float
    return_pct: float
    exit_reason: ExitReason
    rise_pct: Optional[float] = None
    chart_path: Optional[str] = None
    entry_atr: Optional[float] = None

    initial_stop_loss: Optional[float] = None
    initial_profit_target: Optional[float] = None
    is_stop_loss_atr_based: bool = False
    is_stop_loss_llm_based: bool = False
    is_profit_target_atr_based: bool = False
    is_profit_target_llm_based: bool = False
    stop_loss_atr_multiplier: Optional[float] = None
    profit_target_atr_multiplier: Optional[float] = None

    ts_activation_level: Optional[float] = None
    ts_trail_amount: Optional[float] = None
    is_trailing_stop_atr_based: bool = False

    llm_cost: float = 0.0

    @property
    def year(self) -> int:
        return self.entry_time.year

    @property
    def is_winner(self) -> bool:
        return self.return_pct > 0


@dataclass
class DirectionalTradeStats:
    """Accumulator for one direction. Mutated only by the trade loop's fold step."""
    trades: List[Trade] = field(default_factory=list)
    winning_trades: int = 0
    total_return_sum: float = 0.0
    all_returns: List[float] = field(default_factory=list)

    def add(self, trade: Trade) -> None:
        self.trades.append(trade)
        self.all_returns.append(trade.return_pct)
        self.total_return_sum += trade.return_pct
        if trade.is_winner:
            self.winning_trades += 1

    @property
    def count(self) -> int:
        return len(self.trades)


@dataclass
class OverallTradeStats:
    long_stats: DirectionalTradeStats = field(default_factory=DirectionalTradeStats)
    short_stats: DirectionalTradeStats = field(default_factory=DirectionalTradeStats)
    total_trading_days: int = 0
    total_raw_matches: int = 0
    total_llm_confirmed_trades: int = 0
    grand_total_llm_cost: float = 0.0

    def stats_for(self, direction: str) -> DirectionalTradeStats:
        return self.short_stats if direction == SHORT else self.long_stats

    def record(self, trade: Trade) -> None:
        self.stats_for(trade.direction).add(trade)
        self.total_llm_confirmed_trades += 1

    @property
    def all_trades(self) -> List[Trade]:
        return self.long_stats.trades + self.short_stats.trades
