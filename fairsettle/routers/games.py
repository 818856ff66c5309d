from fastapi import APIRouter, Depends

from fairsettle.converter import DataConverter
from fairsettle.dependencies import Services, current_user_id, get_services
from fairsettle.models.api_models import KenoPlayModel, PlinkoPlayModel
from fairsettle.models.schema_models import KenoDrawSchema, PlinkoPlaySchema

game_router = APIRouter(tags=["games"])


class PlinkoAPI:
    @staticmethod
    @game_router.post("/plinko", response_model=PlinkoPlaySchema)
    async def play_plinko(
        request: PlinkoPlayModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        amount = DataConverter.to_minor_units(request.amount)
        return await services.plinko.play(user_id, amount, request.rows, request.risk.value)


class KenoAPI:
    @staticmethod
    @game_router.post("/keno", response_model=KenoDrawSchema)
    async def play_keno(
        request: KenoPlayModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        amount = DataConverter.to_minor_units(request.amount)
        return await services.keno.play(user_id, amount, request.picks)
