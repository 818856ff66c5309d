from pydantic import BaseModel
from typing import Dict, List, Optional
from uuid import UUID
from datetime import datetime


class WalletSchema(BaseModel):
    holder: str
    balance: int
    is_system: bool
    version: int

    class Config:
        from_attributes = True


class LedgerEntrySchema(BaseModel):
    entry_id: UUID
    entry_type: str
    account: str
    user_id: Optional[str]
    amount: int
    round_ref: str
    created_at: datetime

    class Config:
        from_attributes = True


class SeedCommitmentSchema(BaseModel):
    commitment_id: UUID
    scope: str
    server_seed: str
    server_seed_hash: str
    block_hash: Optional[str]
    hybrid_seed: str
    entropy_sources: List[str]
    prng_scheme: str
    nonce: int
    created_at: datetime
    revealed_at: Optional[datetime]

    class Config:
        from_attributes = True


class CaseItemSchema(BaseModel):
    name: str
    value: int
    chance: str


class CaseSchema(BaseModel):
    case_id: UUID
    name: str
    price: int
    items: List[CaseItemSchema]

    class Config:
        from_attributes = True


class BattleParticipantSchema(BaseModel):
    participant_id: UUID
    battle_id: UUID
    user_id: str
    team: int
    seat: int
    is_bot: bool
    ready: bool
    stake: int
    items: Optional[List[dict]]
    total_value: Optional[int]
    payout: Optional[int]

    class Config:
        from_attributes = True


class CaseBattleSchema(BaseModel):
    battle_id: UUID
    status: str
    mode: str
    team_size: int
    max_players: int
    created_by: str
    cases: List[dict]
    stake: int
    pot: int
    commitment_id: UUID
    winning_teams: Optional[List[int]]
    team_totals: Optional[Dict[str, int]]
    tiebreak_team: Optional[int]
    created_at: datetime
    locked_at: Optional[datetime]
    settled_at: Optional[datetime]
    participants: List[BattleParticipantSchema] = []

    class Config:
        from_attributes = True


class PoolSchema(BaseModel):
    pool_id: str
    balance: int
    epoch: int
    nonce: int
    commitment_id: UUID
    next_commitment_id: Optional[UUID]
    version: int
    last_crash_at: Optional[datetime]

    class Config:
        from_attributes = True


class PoolPositionSchema(BaseModel):
    position_id: UUID
    pool_id: str
    epoch: int
    user_id: str
    entry_amount: int
    entry_pool: int
    created_at: datetime

    class Config:
        from_attributes = True


class PlinkoPlaySchema(BaseModel):
    play_id: UUID
    user_id: str
    bet: int
    rows: int
    risk: str
    house_edge_bias: float
    bin_index: int
    multiplier: str
    jackpot: bool
    payout: int
    commitment_id: UUID
    nonce: int
    created_at: datetime

    class Config:
        from_attributes = True


class KenoDrawSchema(BaseModel):
    draw_id: UUID
    user_id: str
    bet: int
    picks: List[int]
    drawn: List[int]
    hits: int
    multiplier: str
    payout: int
    commitment_id: UUID
    nonce: int
    created_at: datetime

    class Config:
        from_attributes = True


class WheelSeatSchema(BaseModel):
    seat_id: UUID
    round_id: UUID
    seat_index: int
    user_id: str
    bet: int
    payout: Optional[int]

    class Config:
        from_attributes = True


class WheelRoundSchema(BaseModel):
    round_id: UUID
    round_number: int
    status: str
    commitment_id: UUID
    boosts: Optional[Dict[str, int]]
    winning_segment: Optional[int]
    betting_ends_at: datetime
    spin_at: datetime
    created_at: datetime
    settled_at: Optional[datetime]
    seats: List[WheelSeatSchema] = []

    class Config:
        from_attributes = True
