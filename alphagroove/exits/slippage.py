from __future__ import annotations

from typing import Optional

from alphagroove.config import SlippageConfig


def apply_slippage(
    price: float, is_long: bool, config: Optional[SlippageConfig], is_entry: bool = False
) -> float:
    """
    Move `price` against the trader.

    Exits: long fills lower, short fills higher. Entries are the mirror image
    (long pays more, short receives less). No config means no adjustment.
    """
    if config is None:
        return price
    # Buying (long entry, short exit) pays up; selling gives up.
    pays_up = is_long == is_entry
    if config.model == "percent":
        factor = config.value / 100
        return price * (1 + factor) if pays_up else price * (1 - factor)
    return price + config.value if pays_up else price - config.value


def calculate_return_pct(entry_price: float, exit_price: float, is_long: bool) -> float:
    """Decimal return, positive when profitable in either direction."""
    if entry_price == 0:
        return 0.0
    if is_long:
        return (exit_price - entry_price) / entry_price
    return (entry_price - exit_price) / entry_price
