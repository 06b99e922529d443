# models.py
from sqlalchemy import Column, Integer, String, Float, DateTime, BigInteger, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import declarative_base, relationship # For SQLAlchemy 2.0+

Base = declarative_base()

class UserEntry(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(String, index=True, nullable=False, unique=True)
    wallet_address = Column(String, nullable=False)
    private_key = Column(String, nullable=False) # Hex encoded secret key, never log
    user_balance = Column(BigInteger, default=0, nullable=False) # Lamports
    last_updated_balance = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Optimistic concurrency token, bumped by SQLAlchemy on every UPDATE
    version = Column(Integer, nullable=False, default=1)

    trades = relationship(
        "TradeEntry", back_populates="user", cascade="all, delete-orphan",
        order_by="[TradeEntry.timestamp, TradeEntry.id]",
    )
    positions = relationship(
        "PositionEntry", back_populates="user", cascade="all, delete-orphan",
        order_by="PositionEntry.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return (f"<UserEntry(id={self.id}, telegram_id='{self.telegram_id}', "
                f"wallet_address='{self.wallet_address}', version={self.version})>")


class TradeEntry(Base):
    """Append-only ledger row."""
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    token_address = Column(String, index=True, nullable=False) # Contract Address
    token_name = Column(String, nullable=False, default="")
    token_symbol = Column(String, nullable=False, default="")
    token_amount = Column(Float, nullable=False) # Signed: + buy, - sell
    sol_spent = Column(Float, nullable=False) # Signed: + spent, - received
    buy_price = Column(Float, nullable=False, default=0.0)
    current_price = Column(Float, nullable=False, default=0.0)
    entry_market_cap = Column(Float, nullable=False, default=0.0)
    sol_pnl = Column(Float, nullable=False, default=0.0)
    usd_pnl = Column(Float, nullable=False, default=0.0)
    tx_signature = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False)

    user = relationship("UserEntry", back_populates="trades")

    def __repr__(self):
        return (f"<TradeEntry(id={self.id}, token_address='{self.token_address}', "
                f"token_amount={self.token_amount}, sol_spent={self.sol_spent}, timestamp='{self.timestamp}')>")


class PositionEntry(Base):
    """Cached fold of the ledger for one token. Rebuilt on every refresh."""
    __tablename__ = "positions"
    __table_args__ = (UniqueConstraint("user_id", "token_address", name="uq_positions_user_token"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    token_address = Column(String, nullable=False)
    token_name = Column(String, nullable=False, default="")
    token_symbol = Column(String, nullable=False, default="")
    total_tokens = Column(Float, nullable=False, default=0.0)
    total_sol_spent = Column(Float, nullable=False, default=0.0)
    average_buy_price = Column(Float, nullable=False, default=0.0)
    current_price = Column(Float, nullable=False, default=0.0)
    current_market_cap = Column(Float, nullable=False, default=0.0)
    sol_pnl = Column(Float, nullable=False, default=0.0)
    usd_pnl = Column(Float, nullable=False, default=0.0)
    entry_market_cap = Column(Float, nullable=False, default=0.0)
    last_price_update = Column(DateTime, nullable=True)

    user = relationship("UserEntry", back_populates="positions")

    def __repr__(self):
        return (f"<PositionEntry(id={self.id}, token_address='{self.token_address}', "
                f"total_tokens={self.total_tokens}, total_sol_spent={self.total_sol_spent})>")
