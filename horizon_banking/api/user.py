"""
User dashboard endpoints
"""

from fastapi import APIRouter, Depends

from .deps import BankingSystem, get_banking_system, require_user
from ..users import User


router = APIRouter()


@router.get("/dashboard")
async def dashboard(
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Balances and the latest transactions"""
    return system.reporting_engine.user_dashboard(user.id)
