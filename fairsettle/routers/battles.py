import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends

from fairsettle.dependencies import Services, current_user_id, get_services
from fairsettle.models.api_models import (
    CreateBattleModel,
    JoinBattleModel,
    SettleBattleModel,
    SettlementResultModel,
)
from fairsettle.models.schema_models import CaseBattleSchema

battle_router = APIRouter(prefix="/battles", tags=["battles"])


class BattleAPI:
    @staticmethod
    @battle_router.get("", response_model=List[CaseBattleSchema])
    async def list_battles(services: Services = Depends(get_services)):
        return await services.battles.list_joinable()

    @staticmethod
    @battle_router.post("", response_model=CaseBattleSchema)
    async def create_battle(
        request: CreateBattleModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.battles.create_round(
            user_id, request.case_ids, request.mode.value, request.team_size
        )

    @staticmethod
    @battle_router.get("/{battle_id}", response_model=CaseBattleSchema)
    async def get_battle(battle_id: UUID, services: Services = Depends(get_services)):
        return await services.battles.read_round(battle_id)

    @staticmethod
    @battle_router.post("/{battle_id}/join", response_model=CaseBattleSchema)
    async def join_battle(
        battle_id: UUID,
        request: JoinBattleModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.battles.join_round(user_id, battle_id, request.team)


class BattleControlAPI:
    @staticmethod
    @battle_router.post("/{battle_id}/ready", response_model=CaseBattleSchema)
    async def ready(
        battle_id: UUID,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.battles.set_ready(user_id, battle_id)

    @staticmethod
    @battle_router.post("/{battle_id}/bots", response_model=CaseBattleSchema)
    async def fill_with_bots(
        battle_id: UUID,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.battles.fill_synthetic(user_id, battle_id)

    @staticmethod
    @battle_router.post("/{battle_id}/lock", response_model=CaseBattleSchema)
    async def lock(
        battle_id: UUID,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.battles.lock_round(user_id, battle_id)

    @staticmethod
    @battle_router.post("/{battle_id}/settle", response_model=SettlementResultModel)
    async def settle(
        battle_id: UUID,
        request: SettleBattleModel,
        services: Services = Depends(get_services),
    ):
        logging.info(f"Settle requested for battle {battle_id}")
        return await services.battles.settle_round(battle_id, request.tiebreak_team)
