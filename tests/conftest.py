"""Shared test fixtures."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from database import create_db_and_tables, make_engine
from positions import Trade
from user_repository import UserRepository

TOKEN_X = "BVG3BJH4ghUPJT9mCi7JbziNwx3dqRTzgo9x5poGpump"
TOKEN_Y = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
T0 = datetime(2025, 1, 1, 12, 0, 0)


def make_trade(token_amount: float, sol_spent: float, minutes: int = 0, token_address: str = TOKEN_X,
               current_price: float = None, entry_market_cap: float = 100_000.0, symbol: str = "XTK") -> Trade:
    price = current_price if current_price is not None else abs(sol_spent / token_amount)
    return Trade(
        token_address=token_address,
        token_name=f"{symbol} token",
        token_symbol=symbol,
        token_amount=token_amount,
        sol_spent=sol_spent,
        buy_price=price if token_amount > 0 else 0.0,
        current_price=price,
        entry_market_cap=entry_market_cap,
        timestamp=T0 + timedelta(minutes=minutes),
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def repository(session_factory) -> UserRepository:
    return UserRepository(session_factory=session_factory)
