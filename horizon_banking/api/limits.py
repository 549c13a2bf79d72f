"""
Transaction limit endpoints
"""

from fastapi import APIRouter, Depends

from .deps import BankingSystem, get_banking_system, require_user
from .schemas import LimitCheckRequest
from ..errors import FeatureDisabled
from ..limits import TransactionLimitManager
from ..users import User


router = APIRouter()


def require_limits(system: BankingSystem = Depends(get_banking_system)) -> TransactionLimitManager:
    if system.limits is None:
        raise FeatureDisabled("Transaction limits are disabled")
    return system.limits


@router.get("")
async def get_limits(
    user: User = Depends(require_user),
    limits: TransactionLimitManager = Depends(require_limits)
):
    """The caller's caps and today's usage"""
    return {"limits": limits.load(user.id).to_public_dict()}


@router.post("/check")
async def check_limits(
    request: LimitCheckRequest,
    user: User = Depends(require_user),
    limits: TransactionLimitManager = Depends(require_limits)
):
    """Would this amount fit today's limits? Nothing is recorded."""
    return limits.evaluate(user.id, request.type, request.amount)
