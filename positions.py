# positions.py
"""
Trade ledger domain: trades, positions and the folds that connect them.

A Position is never authored on its own. It is the result of folding the
trades of one token in timestamp order with ``apply_trade``; the cached rows in
the database are only a read optimisation that ``derive_positions`` rebuilds.
"""
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from errors import InvalidArgument, TradingError


@dataclass(frozen=True)
class Trade:
    token_address: str
    token_name: str
    token_symbol: str
    token_amount: float # + tokens acquired (buy), - tokens disposed (sell)
    sol_spent: float # + SOL leaves the wallet (buy), - SOL received (sell)
    buy_price: float
    current_price: float
    entry_market_cap: float
    timestamp: datetime
    sol_pnl: float = 0.0
    usd_pnl: float = 0.0
    signature: Optional[str] = None


@dataclass
class Position:
    token_address: str
    token_name: str
    token_symbol: str
    total_tokens: float = 0.0
    total_sol_spent: float = 0.0
    average_buy_price: float = 0.0
    current_price: float = 0.0
    current_market_cap: float = 0.0
    sol_pnl: float = 0.0
    usd_pnl: float = 0.0
    entry_market_cap: float = 0.0
    last_price_update: Optional[datetime] = None
    trades: List[Trade] = field(default_factory=list)


@dataclass(frozen=True)
class TokenSnapshot:
    """Live market data for one token, as returned by a price lookup."""
    address: str
    name: str
    symbol: str
    price: float
    market_cap: float
    supply: float = 0.0


@dataclass(frozen=True)
class PortfolioSummary:
    total_sol_spent: float = 0.0
    total_sol_pnl: float = 0.0
    total_usd_pnl: float = 0.0
    number_of_positions: int = 0


PriceLookup = Callable[[str], Awaitable[TokenSnapshot]]


def _check_finite(trade: Trade):
    for name in ("token_amount", "sol_spent", "buy_price", "current_price", "entry_market_cap"):
        value = getattr(trade, name)
        if value is None or not math.isfinite(value):
            raise InvalidArgument(f"Trade {trade.token_address} has a non-finite {name}: {value!r}")


def open_position(trade: Trade) -> Position:
    return Position(
        token_address=trade.token_address,
        token_name=trade.token_name,
        token_symbol=trade.token_symbol,
        total_tokens=trade.token_amount,
        total_sol_spent=trade.sol_spent,
        average_buy_price=trade.buy_price,
        current_price=trade.current_price,
        current_market_cap=trade.entry_market_cap,
        entry_market_cap=trade.entry_market_cap,
        sol_pnl=trade.token_amount * trade.current_price - trade.sol_spent,
        trades=[trade],
    )


def apply_trade(positions: Dict[str, Position], trade: Trade, now: datetime) -> Optional[Position]:
    """
    Folds one trade into the position set keyed by token address.

    Returns the touched position, or None when the trade is a sell for a token
    with no open position (the trade stays in the ledger only).
    """
    _check_finite(trade)
    position = positions.get(trade.token_address)

    if position is None:
        if trade.token_amount <= 0:
            logging.warning(f"Sell of {trade.token_address} without an existing position. Recorded in ledger only.")
            return None
        position = open_position(trade)
        position.last_price_update = now
        positions[trade.token_address] = position
        return position

    position.total_tokens += trade.token_amount
    position.total_sol_spent += trade.sol_spent
    position.current_price = trade.current_price
    position.current_market_cap = trade.entry_market_cap
    position.trades.append(trade)
    position.last_price_update = now

    # Zero balance keeps the previous average to avoid dividing by zero
    if position.total_tokens > 0:
        position.average_buy_price = abs(position.total_sol_spent / position.total_tokens)
        position.sol_pnl = position.total_tokens * position.current_price - position.total_sol_spent
    return position


def sort_trades(trades: Iterable[Trade]) -> List[Trade]:
    # sorted() is stable, so trades sharing a timestamp keep ledger order
    return sorted(trades, key=lambda t: t.timestamp)


def derive_positions(trades: Iterable[Trade], live: Optional[Iterable[Position]] = None) -> List[Position]:
    """
    Rebuilds every position from the ledger.

    ``live`` are previously refreshed positions. Their current price and market
    cap replace the trade-time snapshot when they were observed at or after the
    latest trade of that token.
    """
    positions: Dict[str, Position] = {}
    for trade in sort_trades(trades):
        apply_trade(positions, trade, trade.timestamp)

    live_by_token = {p.token_address: p for p in live or []}
    for position in positions.values():
        cached = live_by_token.get(position.token_address)
        if cached is None or cached.last_price_update is None:
            continue
        if cached.last_price_update >= position.trades[-1].timestamp:
            position.current_price = cached.current_price
            position.current_market_cap = cached.current_market_cap
            position.last_price_update = cached.last_price_update
            position.sol_pnl = position.total_tokens * position.current_price - position.total_sol_spent
            # USD PnL is only valid while the SOL PnL it was priced from is unchanged
            if cached.sol_pnl == position.sol_pnl:
                position.usd_pnl = cached.usd_pnl

    return list(positions.values())


async def refresh_pnl(positions: List[Position], price_lookup: PriceLookup, base_currency_rate: float, now: Optional[datetime] = None) -> List[Position]:
    """
    Re-prices every position with live data and recomputes SOL and USD PnL.

    A failed lookup leaves that position's prices untouched and does not stop
    the others from refreshing.
    """
    now = now or datetime.now()
    refreshed = []
    for position in positions:
        updated = replace(position, trades=list(position.trades))
        try:
            snapshot = await price_lookup(position.token_address)
            updated.current_price = snapshot.price
            updated.current_market_cap = snapshot.market_cap
            updated.last_price_update = now
        except TradingError as e:
            logging.warning(f"Price refresh failed for {position.token_address}, keeping previous price: {e}")

        updated.sol_pnl = updated.total_tokens * updated.current_price - updated.total_sol_spent
        updated.usd_pnl = updated.sol_pnl * base_currency_rate
        refreshed.append(updated)
    return refreshed


def summarize(positions: Iterable[Position]) -> PortfolioSummary:
    summary = PortfolioSummary()
    for position in positions:
        summary = PortfolioSummary(
            total_sol_spent=summary.total_sol_spent + position.total_sol_spent,
            total_sol_pnl=summary.total_sol_pnl + position.sol_pnl,
            total_usd_pnl=summary.total_usd_pnl + position.usd_pnl,
            number_of_positions=summary.number_of_positions + 1,
        )
    return summary
