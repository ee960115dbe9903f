from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from alphagroove.models import Trade

INITIAL_CAPITAL = 10_000.0


def mean_return(returns: Sequence[float]) -> float:
    return float(np.mean(returns)) if len(returns) else 0.0


def median_return(returns: Sequence[float]) -> float:
    return float(np.median(returns)) if len(returns) else 0.0


def std_dev_return(returns: Sequence[float]) -> float:
    """Sample standard deviation (n-1); 0 for fewer than two returns."""
    if len(returns) <= 1:
        return 0.0
    return float(np.std(returns, ddof=1))


def win_rate(winning: int, total: int) -> float:
    """Percent, 0-100."""
    return winning / total * 100 if total > 0 else 0.0


@dataclass(frozen=True)
class PortfolioGrowth:
    initial_capital: float
    final_capital: float
    total_dollar_return: float
    percentage_growth: float


def calculate_portfolio_growth(returns: Sequence[float], initial_capital: float = INITIAL_CAPITAL) -> PortfolioGrowth:
    """Compound decimal returns in the order given."""
    final = initial_capital * float(np.prod([1.0 + r for r in returns])) if len(returns) else initial_capital
    growth_pct = (final / initial_capital - 1) * 100
    return PortfolioGrowth(
        initial_capital=initial_capital,
        final_capital=final,
        total_dollar_return=final - initial_capital,
        percentage_growth=growth_pct,
    )


@dataclass(frozen=True)
class ReturnSummary:
    count: int
    min_return: float
    max_return: float
    mean: float
    median: float
    std_dev: float
    win_rate: float
    trade_pct_of_days: Optional[float]


def summarize(trades: Sequence[Trade], trading_days: int = 0) -> Optional[ReturnSummary]:
    if not trades:
        return None
    returns = [t.return_pct for t in trades]
    winners = sum(1 for t in trades if t.is_winner)
    return ReturnSummary(
        count=len(trades),
        min_return=min(returns),
        max_return=max(returns),
        mean=mean_return(returns),
        median=median_return(returns),
        std_dev=std_dev_return(returns),
        win_rate=win_rate(winners, len(trades)),
        trade_pct_of_days=(len(trades) / trading_days * 100) if trading_days > 0 else None,
    )


def chronological(trades: Sequence[Trade]) -> list[Trade]:
    return sorted(trades, key=lambda t: (t.trade_date, t.entry_time))
