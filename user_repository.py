# user_repository.py
"""
Persistence boundary for the User aggregate.

A user, their trade ledger and their cached positions are loaded and saved as
one document. Saves are guarded twice: an ``asyncio.Lock`` per telegram id
serializes read-modify-write cycles inside this process, and the ``version``
column rejects a save whose snapshot is older than the stored row.
"""
import asyncio
import logging
import math
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from config import MAX_SAVE_ATTEMPTS
from database import SessionLocal
from errors import ConcurrentUpdate, InvalidArgument, NotFound
from models import PositionEntry, TradeEntry, UserEntry
from positions import Position, Trade, apply_trade, derive_positions


@dataclass
class User:
    telegram_id: str
    wallet_address: str
    private_key: str = field(repr=False)
    user_balance: int = 0 # Lamports
    last_updated_balance: Optional[datetime] = None
    trades: List[Trade] = field(default_factory=list)
    positions: List[Position] = field(default_factory=list)
    version: int = 0


def _trade_from_row(row: TradeEntry) -> Trade:
    return Trade(
        token_address=row.token_address,
        token_name=row.token_name,
        token_symbol=row.token_symbol,
        token_amount=row.token_amount,
        sol_spent=row.sol_spent,
        buy_price=row.buy_price,
        current_price=row.current_price,
        entry_market_cap=row.entry_market_cap,
        timestamp=row.timestamp,
        sol_pnl=row.sol_pnl,
        usd_pnl=row.usd_pnl,
        signature=row.tx_signature,
    )


def _trade_to_row(trade: Trade) -> TradeEntry:
    return TradeEntry(
        token_address=trade.token_address,
        token_name=trade.token_name,
        token_symbol=trade.token_symbol,
        token_amount=trade.token_amount,
        sol_spent=trade.sol_spent,
        buy_price=trade.buy_price,
        current_price=trade.current_price,
        entry_market_cap=trade.entry_market_cap,
        sol_pnl=trade.sol_pnl,
        usd_pnl=trade.usd_pnl,
        tx_signature=trade.signature,
        timestamp=trade.timestamp,
    )


_POSITION_FIELDS = (
    "token_name", "token_symbol", "total_tokens", "total_sol_spent", "average_buy_price",
    "current_price", "current_market_cap", "sol_pnl", "usd_pnl", "entry_market_cap", "last_price_update",
)


def _user_from_row(row: UserEntry) -> User:
    trades = [_trade_from_row(t) for t in row.trades]
    by_token: Dict[str, List[Trade]] = defaultdict(list)
    for trade in trades:
        by_token[trade.token_address].append(trade)

    positions = []
    for entry in row.positions:
        position = Position(token_address=entry.token_address, trades=list(by_token.get(entry.token_address, [])),
                            token_name=entry.token_name, token_symbol=entry.token_symbol)
        for name in _POSITION_FIELDS:
            setattr(position, name, getattr(entry, name))
        positions.append(position)

    return User(
        telegram_id=row.telegram_id,
        wallet_address=row.wallet_address,
        private_key=row.private_key,
        user_balance=row.user_balance,
        last_updated_balance=row.last_updated_balance,
        trades=trades,
        positions=positions,
        version=row.version,
    )


def positions_diverge(cached: List[Position], derived: List[Position]) -> bool:
    """True when the cached position rows no longer agree with the ledger."""
    cached_by_token = {p.token_address: p for p in cached}
    if set(cached_by_token) != {p.token_address for p in derived}:
        return True
    for position in derived:
        other = cached_by_token[position.token_address]
        if not math.isclose(other.total_tokens, position.total_tokens, rel_tol=1e-9, abs_tol=1e-12):
            return True
        if not math.isclose(other.total_sol_spent, position.total_sol_spent, rel_tol=1e-9, abs_tol=1e-12):
            return True
    return False


class UserRepository:
    def __init__(self, session_factory=SessionLocal, max_save_attempts: int = MAX_SAVE_ATTEMPTS):
        self.session_factory = session_factory
        self.max_save_attempts = max_save_attempts
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, telegram_id: str) -> asyncio.Lock:
        lock = self._locks.get(telegram_id)
        if lock is None:
            lock = self._locks[telegram_id] = asyncio.Lock()
        return lock

    # --- document access ---

    async def find_user(self, telegram_id: str) -> User:
        return await asyncio.to_thread(self._find_user_sync, telegram_id)

    async def create_user(self, telegram_id: str, wallet_address: str, private_key: str) -> User:
        return await asyncio.to_thread(self._create_user_sync, telegram_id, wallet_address, private_key)

    async def save_user(self, user: User) -> User:
        """Replaces the stored aggregate. Raises ConcurrentUpdate when ``user`` is stale."""
        return await asyncio.to_thread(self._save_user_sync, user)

    async def list_telegram_ids(self) -> List[str]:
        return await asyncio.to_thread(self._list_telegram_ids_sync)

    # --- serialized mutations ---

    async def record_trade(self, telegram_id: str, trade: Trade) -> User:
        """Appends a trade to the ledger and folds it into the user's positions."""
        async with self.lock_for(telegram_id):
            for attempt in range(1, self.max_save_attempts + 1):
                user = await self.find_user(telegram_id)

                derived = derive_positions(user.trades, live=user.positions)
                if positions_diverge(user.positions, derived):
                    logging.warning(f"Cached positions for user {telegram_id} diverge from the ledger. Rebuilding.")
                    user.positions = derived

                positions = {p.token_address: p for p in user.positions}
                user.trades.append(trade)
                apply_trade(positions, trade, datetime.now())
                user.positions = list(positions.values())

                try:
                    saved = await self.save_user(user)
                    logging.info(f"Recorded {trade.token_amount:+} {trade.token_symbol or trade.token_address} for user {telegram_id}")
                    return saved
                except ConcurrentUpdate:
                    logging.warning(f"Concurrent update for user {telegram_id} while recording trade (attempt {attempt}/{self.max_save_attempts}).")
            raise ConcurrentUpdate(f"Could not record trade for user {telegram_id} after {self.max_save_attempts} attempts")

    async def replace_positions(self, telegram_id: str, positions: List[Position], expected_version: int) -> User:
        """Batch write of a refreshed position set. Caller must hold ``lock_for(telegram_id)``."""
        user = await self.find_user(telegram_id)
        if user.version != expected_version:
            raise ConcurrentUpdate(f"User {telegram_id} changed during position refresh")
        user.positions = positions
        return await self.save_user(user)

    async def clear_trades(self, telegram_id: str) -> User:
        """Empties the ledger and the derived positions in one save."""
        async with self.lock_for(telegram_id):
            user = await self.find_user(telegram_id)
            user.trades = []
            user.positions = []
            saved = await self.save_user(user)
            logging.info(f"Cleared trade ledger for user {telegram_id}")
            return saved

    async def update_balance(self, telegram_id: str, lamports: int, at: datetime) -> User:
        async with self.lock_for(telegram_id):
            user = await self.find_user(telegram_id)
            user.user_balance = lamports
            user.last_updated_balance = at
            return await self.save_user(user)

    # --- synchronous SQLAlchemy work, run in a worker thread ---

    def _find_user_sync(self, telegram_id: str) -> User:
        with self.session_factory() as db:
            row = db.query(UserEntry).filter(UserEntry.telegram_id == telegram_id).first()
            if row is None:
                raise NotFound(f"User {telegram_id} not found")
            return _user_from_row(row)

    def _create_user_sync(self, telegram_id: str, wallet_address: str, private_key: str) -> User:
        with self.session_factory() as db:
            row = UserEntry(telegram_id=telegram_id, wallet_address=wallet_address, private_key=private_key, user_balance=0)
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logging.info(f"User {telegram_id} was created concurrently, loading existing record.")
                return self._find_user_sync(telegram_id)
            logging.info(f"New user created: {telegram_id} ({wallet_address})")
            return _user_from_row(row)

    def _save_user_sync(self, user: User) -> User:
        with self.session_factory() as db:
            row = db.query(UserEntry).filter(UserEntry.telegram_id == user.telegram_id).first()
            if row is None:
                raise NotFound(f"User {user.telegram_id} not found")
            if row.version != user.version:
                raise ConcurrentUpdate(f"User {user.telegram_id} is at version {row.version}, save was based on {user.version}")

            row.wallet_address = user.wallet_address
            row.private_key = user.private_key
            row.user_balance = user.user_balance
            row.last_updated_balance = user.last_updated_balance
            # Always touch the row so the version column is bumped
            row.updated_at = datetime.now()

            persisted = len(row.trades)
            if not user.trades:
                row.trades.clear()
            elif len(user.trades) < persisted:
                raise InvalidArgument(f"Trade ledger for user {user.telegram_id} is append-only")
            else:
                for trade in user.trades[persisted:]:
                    row.trades.append(_trade_to_row(trade))

            entries = {entry.token_address: entry for entry in row.positions}
            keep = set()
            for position in user.positions:
                entry = entries.get(position.token_address)
                if entry is None:
                    entry = PositionEntry(token_address=position.token_address)
                    row.positions.append(entry)
                for name in _POSITION_FIELDS:
                    setattr(entry, name, getattr(position, name))
                keep.add(position.token_address)
            for token_address, entry in entries.items():
                if token_address not in keep:
                    row.positions.remove(entry)

            try:
                db.commit()
            except StaleDataError as e:
                db.rollback()
                raise ConcurrentUpdate(f"User {user.telegram_id} was modified by another writer") from e
            return _user_from_row(row)

    def _list_telegram_ids_sync(self) -> List[str]:
        with self.session_factory() as db:
            return [telegram_id for (telegram_id,) in db.query(UserEntry.telegram_id).all()]
