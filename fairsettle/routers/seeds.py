from uuid import UUID

from fastapi import APIRouter, Depends

from fairsettle.dependencies import Services, current_user_id, get_services
from fairsettle.domain import crash_rules, keno_rules, plinko_rules, wheel_rules
from fairsettle.domain.seed_combiner import combine, hash_server_seed
from fairsettle.domain.ticket_rules import build_ticket_ranges, draw_ticket, resolve_ticket
from fairsettle.models.api_models import (
    BattleVerifyModel,
    CommitmentModel,
    CrashVerifyModel,
    KenoVerifyModel,
    PlinkoVerifyModel,
    RevealedSeedModel,
    UserGameModel,
    VerificationResultModel,
    WheelVerifyModel,
)

seed_router = APIRouter(tags=["seeds"])


def user_scope(game: UserGameModel, user_id: str) -> str:
    return f"{game.value}:{user_id}"


class SeedAPI:
    @staticmethod
    @seed_router.get("/seeds/{game}/commitment", response_model=CommitmentModel)
    async def get_commitment(
        game: UserGameModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.seeds.public_commitment(user_scope(game, user_id))

    @staticmethod
    @seed_router.post("/seeds/{game}/rotate", response_model=RevealedSeedModel | None)
    async def rotate(
        game: UserGameModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.seeds.rotate(user_scope(game, user_id))

    @staticmethod
    @seed_router.get("/seeds/{commitment_id}", response_model=RevealedSeedModel)
    async def get_revealed(commitment_id: UUID, services: Services = Depends(get_services)):
        return await services.seeds.revealed_seed(commitment_id)


class VerifyAPI:
    """Recompute an outcome from a revealed seed. Needs no stored state."""

    @staticmethod
    @seed_router.post("/verify/plinko", response_model=VerificationResultModel)
    async def verify_plinko(request: PlinkoVerifyModel):
        hybrid_seed = combine(request.server_seed, request.block_hash)
        bin_index = plinko_rules.resolve_bin(
            hybrid_seed, request.nonce, request.rows, request.risk.value, request.house_edge_bias
        )
        return VerificationResultModel(
            valid=bin_index == request.bin_index,
            hybrid_seed=hybrid_seed,
            detail={"bin_index": bin_index},
        )

    @staticmethod
    @seed_router.post("/verify/keno", response_model=VerificationResultModel)
    async def verify_keno(request: KenoVerifyModel):
        hybrid_seed = combine(request.server_seed, request.block_hash)
        drawn = keno_rules.draw_numbers(hybrid_seed, request.nonce)
        return VerificationResultModel(
            valid=drawn == sorted(request.drawn), hybrid_seed=hybrid_seed, detail={"drawn": drawn}
        )

    @staticmethod
    @seed_router.post("/verify/wheel", response_model=VerificationResultModel)
    async def verify_wheel(request: WheelVerifyModel):
        hybrid_seed = combine(request.server_seed, request.block_hash)
        segment = wheel_rules.resolve_segment(hybrid_seed)
        boosts = wheel_rules.resolve_boosts(hybrid_seed)
        return VerificationResultModel(
            valid=segment == request.segment,
            hybrid_seed=hybrid_seed,
            detail={"segment": segment, "boosts": {str(k): v for k, v in boosts.items()}},
        )

    @staticmethod
    @seed_router.post("/verify/crash", response_model=VerificationResultModel)
    async def verify_crash(request: CrashVerifyModel):
        hybrid_seed = combine(request.server_seed, request.block_hash)
        roll = crash_rules.crash_roll(hybrid_seed, request.nonce)
        return VerificationResultModel(
            valid=roll == request.roll,
            hybrid_seed=hybrid_seed,
            detail={"roll": roll, "crash": roll == crash_rules.CRASH_ROLL},
        )

    @staticmethod
    @seed_router.post("/verify/battle", response_model=VerificationResultModel)
    async def verify_battle(request: BattleVerifyModel):
        hybrid_seed = combine(request.server_seed, request.block_hash)
        ticket = draw_ticket(hybrid_seed, request.nonce)
        ranges = build_ticket_ranges([item["chance"] for item in request.items])
        item = request.items[resolve_ticket(ticket, ranges)]
        return VerificationResultModel(
            valid=ticket == request.ticket and hash_server_seed(request.server_seed) == request.server_seed_hash,
            hybrid_seed=hybrid_seed,
            detail={"ticket": ticket, "item": item.get("name")},
        )
