from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.schema import Column, Index
from sqlalchemy.types import JSON, BigInteger, Boolean, DateTime, Float, Integer, String, Uuid
from uuid6 import uuid7
from datetime import datetime


class Base(DeclarativeBase):
    pass


class Wallet(Base):
    __tablename__ = "wallets"
    holder = Column(String, primary_key=True)  # user id, or "house" / "jackpot"
    balance = Column(BigInteger, nullable=False, default=0)
    is_system = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    entry_id = Column(Uuid, primary_key=True, default=uuid7)
    entry_type = Column(String, nullable=False)
    account = Column(String, nullable=False)
    user_id = Column(String, nullable=True)
    amount = Column(BigInteger, nullable=False)
    round_ref = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.now)


class SeedCommitment(Base):
    __tablename__ = "seed_commitments"
    commitment_id = Column(Uuid, primary_key=True, default=uuid7)
    scope = Column(String, nullable=False, index=True)
    server_seed = Column(String, nullable=False)
    server_seed_hash = Column(String, nullable=False)
    block_hash = Column(String, nullable=True)
    hybrid_seed = Column(String, nullable=False)
    entropy_sources = Column(JSON, nullable=False)
    prng_scheme = Column(String, nullable=False)
    nonce = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.now)
    revealed_at = Column(DateTime, nullable=True)


class Case(Base):
    __tablename__ = "cases"
    case_id = Column(Uuid, primary_key=True, default=uuid7)
    name = Column(String, nullable=False)
    price = Column(BigInteger, nullable=False)
    items = Column(JSON, nullable=False)  # [{"name", "value", "chance"}]


class CaseBattle(Base):
    __tablename__ = "case_battles"
    battle_id = Column(Uuid, primary_key=True, default=uuid7)
    status = Column(String, nullable=False, default="waiting")
    mode = Column(String, nullable=False, default="normal")
    team_size = Column(Integer, nullable=False, default=1)
    max_players = Column(Integer, nullable=False)
    created_by = Column(String, nullable=False)
    cases = Column(JSON, nullable=False)  # snapshot of the cases at creation
    stake = Column(BigInteger, nullable=False)  # per human participant
    pot = Column(BigInteger, nullable=False, default=0)
    commitment_id = Column(Uuid, nullable=False)
    winning_teams = Column(JSON, nullable=True)
    team_totals = Column(JSON, nullable=True)
    tiebreak_team = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    locked_at = Column(DateTime, nullable=True)
    settled_at = Column(DateTime, nullable=True)

    participants = relationship(
        "BattleParticipant",
        primaryjoin="foreign(BattleParticipant.battle_id) == CaseBattle.battle_id",
        order_by="BattleParticipant.seat",
        back_populates="battle",
        lazy="selectin",
    )


class BattleParticipant(Base):
    __tablename__ = "battle_participants"
    participant_id = Column(Uuid, primary_key=True, default=uuid7)
    battle_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    team = Column(Integer, nullable=False)
    seat = Column(Integer, nullable=False)
    is_bot = Column(Boolean, nullable=False, default=False)
    ready = Column(Boolean, nullable=False, default=False)
    stake = Column(BigInteger, nullable=False, default=0)
    items = Column(JSON, nullable=True)  # [{"case_id", "ticket", "name", "value"}]
    total_value = Column(BigInteger, nullable=True)
    payout = Column(BigInteger, nullable=True)
    joined_at = Column(DateTime, default=datetime.now)

    battle = relationship(
        "CaseBattle",
        primaryjoin="foreign(BattleParticipant.battle_id) == CaseBattle.battle_id",
        back_populates="participants",
    )

    __table_args__ = (
        Index("ix_battle_participant_seat", "battle_id", "seat", unique=True),
    )


class Pool(Base):
    __tablename__ = "pools"
    pool_id = Column(String, primary_key=True)
    balance = Column(BigInteger, nullable=False, default=0)
    epoch = Column(Integer, nullable=False, default=0)
    nonce = Column(Integer, nullable=False, default=0)
    commitment_id = Column(Uuid, nullable=False)
    next_commitment_id = Column(Uuid, nullable=True)  # pre-committed seed of the next epoch
    version = Column(Integer, nullable=False, default=0)
    last_crash_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class PoolPosition(Base):
    __tablename__ = "pool_positions"
    position_id = Column(Uuid, primary_key=True, default=uuid7)
    pool_id = Column(String, nullable=False, index=True)
    epoch = Column(Integer, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    entry_amount = Column(BigInteger, nullable=False)
    entry_pool = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class PlinkoPlay(Base):
    __tablename__ = "plinko_plays"
    play_id = Column(Uuid, primary_key=True, default=uuid7)
    user_id = Column(String, nullable=False, index=True)
    bet = Column(BigInteger, nullable=False)
    rows = Column(Integer, nullable=False)
    risk = Column(String, nullable=False)
    house_edge_bias = Column(Float, nullable=False, default=0.0)
    bin_index = Column(Integer, nullable=False)
    multiplier = Column(String, nullable=False)
    jackpot = Column(Boolean, nullable=False, default=False)
    payout = Column(BigInteger, nullable=False)
    commitment_id = Column(Uuid, nullable=False)
    nonce = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class KenoDraw(Base):
    __tablename__ = "keno_draws"
    draw_id = Column(Uuid, primary_key=True, default=uuid7)
    user_id = Column(String, nullable=False, index=True)
    bet = Column(BigInteger, nullable=False)
    picks = Column(JSON, nullable=False)
    drawn = Column(JSON, nullable=False)
    hits = Column(Integer, nullable=False)
    multiplier = Column(String, nullable=False)
    payout = Column(BigInteger, nullable=False)
    commitment_id = Column(Uuid, nullable=False)
    nonce = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class WheelRound(Base):
    __tablename__ = "wheel_rounds"
    round_id = Column(Uuid, primary_key=True, default=uuid7)
    round_number = Column(Integer, nullable=False, unique=True)
    status = Column(String, nullable=False, default="betting")
    commitment_id = Column(Uuid, nullable=False)
    boosts = Column(JSON, nullable=True)  # {"segment": multiplier}
    winning_segment = Column(Integer, nullable=True)
    betting_ends_at = Column(DateTime, nullable=False)
    spin_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    settled_at = Column(DateTime, nullable=True)

    seats = relationship(
        "WheelSeat",
        primaryjoin="foreign(WheelSeat.round_id) == WheelRound.round_id",
        order_by="WheelSeat.seat_index",
        back_populates="wheel_round",
        lazy="selectin",
    )


class WheelSeat(Base):
    __tablename__ = "wheel_seats"
    seat_id = Column(Uuid, primary_key=True, default=uuid7)
    round_id = Column(Uuid, nullable=False, index=True)
    seat_index = Column(Integer, nullable=False)
    user_id = Column(String, nullable=False)
    bet = Column(BigInteger, nullable=False)
    payout = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    wheel_round = relationship(
        "WheelRound",
        primaryjoin="foreign(WheelSeat.round_id) == WheelRound.round_id",
        back_populates="seats",
    )

    __table_args__ = (
        Index("ix_wheel_seat_round_seat", "round_id", "seat_index", unique=True),
    )
