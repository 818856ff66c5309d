import logging
import secrets
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, status

from fairsettle.converter import DataConverter
from fairsettle.dependencies import Services, current_user_id, get_services
from fairsettle.models.api_models import CommitmentModel, PoolActionModel, PoolBuyModel, PoolSellModel
from fairsettle.models.schema_models import PoolPositionSchema, PoolSchema

pool_router = APIRouter(prefix="/pool", tags=["pool"])


class PoolAPI:
    @staticmethod
    @pool_router.get("", response_model=PoolSchema)
    async def get_pool(services: Services = Depends(get_services)):
        return await services.pool.read_pool()

    @staticmethod
    @pool_router.get("/commitment", response_model=CommitmentModel)
    async def get_commitment(services: Services = Depends(get_services)):
        return await services.pool.current_commitment()

    @staticmethod
    @pool_router.get("/positions", response_model=List[PoolPositionSchema])
    async def get_positions(
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.pool.positions(user_id)

    @staticmethod
    @pool_router.post("/buy", response_model=PoolActionModel)
    async def buy(
        request: PoolBuyModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        amount = DataConverter.to_minor_units(request.amount)
        return await services.pool.buy(user_id, amount)

    @staticmethod
    @pool_router.post("/sell", response_model=PoolActionModel)
    async def sell(
        request: PoolSellModel,
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        return await services.pool.sell(user_id, request.percent)


class PoolAdminAPI:
    @staticmethod
    @pool_router.post("/crash", response_model=PoolActionModel)
    async def force_crash(
        x_admin_token: str | None = Header(default=None),
        services: Services = Depends(get_services),
    ):
        if not services.admin_token or not x_admin_token or not secrets.compare_digest(
            x_admin_token, services.admin_token
        ):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        logging.warning(f"Forced crash of pool {services.pool.pool_id}")
        return await services.pool.force_crash()
