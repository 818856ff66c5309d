from fastapi import APIRouter, Depends

from fairsettle.converter import DataConverter
from fairsettle.dependencies import Services, current_user_id, get_services
from fairsettle.models.api_models import BalanceModel

wallet_router = APIRouter(prefix="/wallet", tags=["wallet"])


class WalletAPI:
    @staticmethod
    @wallet_router.get("", response_model=BalanceModel)
    async def get_balance(
        user_id: str = Depends(current_user_id),
        services: Services = Depends(get_services),
    ):
        balance = await services.ledger.read_balance(user_id)
        return DataConverter.to_balance(user_id, balance)
