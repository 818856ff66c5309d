from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from fairsettle.converter import DataConverter
from fairsettle.dependencies import Services, current_user_id, get_services
from fairsettle.models.api_models import WheelBetModel
from fairsettle.models.schema_models import WheelRoundSchema

wheel_router = APIRouter(prefix="/wheel", tags=["wheel"])


class WheelAPI:
    @staticmethod
    @wheel_router.get("/current", response_model=WheelRoundSchema)
    async def current_round(services: Services = Depends(get_services)):
        wheel_round = await services.wheel.current_round()
        if wheel_round is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No wheel round yet")
        return wheel_round

    @staticmethod
    @wheel_router.get("/{round_id}", response_model=WheelRoundSchema)
    async def get_round(round_id: UUID, services: Services = Depends(get_services)):
        return await services.wheel.read_round(round_id)

    @staticmethod
    @wheel_router.post("/{round_id}/bet", response_model=WheelRoundSchema)
    async def place_bet(
        round_id: UUID,
        request: WheelBetModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        amount = DataConverter.to_minor_units(request.amount)
        return await services.wheel.place_bet(user_id, round_id, request.seat_index, amount)
