from sqlalchemy import (
    Column, Integer, String, Float, DateTime, ForeignKey, Numeric, Boolean, JSON, Index, CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
import datetime
import enum

Base = declarative_base()

MONEY = Numeric(18, 2)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class MovementKind(str, enum.Enum):
    STAKE = "stake"
    CREDIT = "credit"
    ADJUSTMENT = "adjustment"


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    is_admin = Column(Boolean, default=False)

    balance = relationship('Balance', back_populates='user', uselist=False)
    seeds = relationship('FairnessSeed', back_populates='user')


class FairnessSeed(Base):
    __tablename__ = 'fairness_seeds'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    game_slug = Column(String(64), nullable=False)
    server_secret = Column(String(64), nullable=False)       # hex of 32 random bytes, revealed on rotation
    server_secret_hash = Column(String(64), nullable=False)  # SHA-256 of server_secret, published upfront
    client_value = Column(String(100), nullable=False)
    counter = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    revealed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship('User', back_populates='seeds')

    __table_args__ = (
        CheckConstraint('counter >= 0', name='ck_fairness_seeds_counter'),
    )


# At most one active seed per (user, game)
ACTIVE_SEED_WHERE = FairnessSeed.active == True  # noqa: E712

Index(
    'uq_fairness_seeds_active',
    FairnessSeed.user_id,
    FairnessSeed.game_slug,
    unique=True,
    sqlite_where=ACTIVE_SEED_WHERE,
    postgresql_where=ACTIVE_SEED_WHERE,
)


class GameConfig(Base):
    __tablename__ = 'casino_game_configs'
    game_slug = Column(String(64), primary_key=True)
    active = Column(Boolean, nullable=False, default=True)
    rtp_target = Column(Float, nullable=False)
    min_stake = Column(MONEY, nullable=False)
    max_stake = Column(MONEY, nullable=False)
    payout_structure = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class CasinoRound(Base):
    __tablename__ = 'casino_rounds'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    game_slug = Column(String(64), nullable=False)
    stake = Column(MONEY, nullable=False)
    payout = Column(MONEY, nullable=False)
    house_profit = Column(MONEY, nullable=False)  # stake - payout, negative when the house pays out
    input_params = Column(JSON, nullable=False)
    outcome = Column(JSON, nullable=False)
    fairness_snapshot = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('ix_casino_rounds_user_game_created', 'user_id', 'game_slug', 'created_at'),
    )


class Balance(Base):
    __tablename__ = 'balances'
    user_id = Column(Integer, ForeignKey('users.id'), primary_key=True)
    available = Column(MONEY, nullable=False, default=0)
    held = Column(MONEY, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship('User', back_populates='balance')

    __table_args__ = (
        CheckConstraint('available >= 0', name='ck_balances_available'),
        CheckConstraint('held >= 0', name='ck_balances_held'),
    )


class Movement(Base):
    __tablename__ = 'movements'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    kind = Column(String(16), nullable=False)
    amount = Column(MONEY, nullable=False)  # signed: stakes are negative, credits positive
    balance_before = Column(MONEY, nullable=False)
    balance_after = Column(MONEY, nullable=False)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('ix_movements_user_created', 'user_id', 'created_at'),
    )
