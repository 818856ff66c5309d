from pydantic import BaseModel, Field
from decimal import Decimal
from enum import Enum
from uuid import UUID
from datetime import datetime
from typing import Any, Dict, List, Optional


class BattleModeModel(str, Enum):
    normal = "normal"
    crazy = "crazy"  # lowest total wins
    group = "group"  # every participant shares the pot


class BattleStatusModel(str, Enum):
    waiting = "waiting"
    active = "active"
    opened = "opened"
    ended = "ended"


class RiskModel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class WheelStatusModel(str, Enum):
    betting = "betting"
    spinning = "spinning"
    completed = "completed"


class UserGameModel(str, Enum):
    plinko = "plinko"
    keno = "keno"


class CreateBattleModel(BaseModel):
    case_ids: List[UUID] = Field(min_length=1)
    mode: BattleModeModel = BattleModeModel.normal
    team_size: int = Field(default=1, ge=1, le=3)


class JoinBattleModel(BaseModel):
    team: Optional[int] = Field(default=None, ge=1, le=2)


class SettleBattleModel(BaseModel):
    tiebreak_team: Optional[int] = Field(default=None, ge=1, le=2)


class PlinkoPlayModel(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    rows: int = Field(default=16, ge=8, le=16)
    risk: RiskModel = RiskModel.low


class KenoPlayModel(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    picks: List[int] = Field(min_length=1, max_length=10)


class WheelBetModel(BaseModel):
    seat_index: int = Field(ge=0, le=11)
    amount: Decimal = Field(gt=0, decimal_places=2)


class PoolBuyModel(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)


class PoolSellModel(BaseModel):
    percent: Decimal = Field(default=Decimal(100), gt=0, le=100)


class CommitmentModel(BaseModel):
    """Public half of a commitment: safe to show before the outcome exists."""

    commitment_id: UUID
    scope: str
    server_seed_hash: str
    block_hash: Optional[str]
    entropy_sources: List[str]
    prng_scheme: str
    nonce: int
    created_at: datetime


class RevealedSeedModel(BaseModel):
    commitment_id: UUID
    scope: str
    server_seed: str
    server_seed_hash: str
    block_hash: Optional[str]
    hybrid_seed: str
    entropy_sources: List[str]
    prng_scheme: str
    nonce: int
    revealed_at: Optional[datetime]


class SettlementResultModel(BaseModel):
    round_ref: str
    winners: List[str]
    shares: Dict[str, str]  # exact rational shares, e.g. "1001/2"
    payouts: Dict[str, int]
    balance_deltas: Dict[str, int]
    house_delta: int
    revealed: Optional[RevealedSeedModel] = None


class PoolActionModel(BaseModel):
    pool_id: str
    epoch: int
    action: str  # "buy", "sell" or "crash"
    user_id: Optional[str] = None
    amount: int = 0
    nonce: Optional[int] = None
    roll: Optional[int] = None
    crashed: bool = False
    pool_balance: int
    jackpot: Optional[int] = None
    house: Optional[int] = None
    forfeited_positions: int = 0
    revealed: Optional[RevealedSeedModel] = None


class BalanceModel(BaseModel):
    holder: str
    balance: int
    display: str


class PlinkoVerifyModel(BaseModel):
    server_seed: str
    block_hash: Optional[str] = None
    nonce: int = Field(ge=0)
    rows: int = Field(ge=8, le=16)
    risk: RiskModel
    house_edge_bias: float = 0.0
    bin_index: int


class KenoVerifyModel(BaseModel):
    server_seed: str
    block_hash: Optional[str] = None
    nonce: int = Field(ge=0)
    drawn: List[int]


class WheelVerifyModel(BaseModel):
    server_seed: str
    block_hash: Optional[str] = None
    segment: int


class CrashVerifyModel(BaseModel):
    server_seed: str
    block_hash: Optional[str] = None
    nonce: int = Field(ge=0)
    roll: int


class BattleVerifyModel(BaseModel):
    server_seed: str
    block_hash: Optional[str] = None
    server_seed_hash: str
    items: List[dict]
    nonce: int = Field(ge=0)
    ticket: int


class VerificationResultModel(BaseModel):
    valid: bool
    hybrid_seed: str
    detail: Dict[str, Any] = {}
