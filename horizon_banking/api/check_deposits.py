"""
Check deposit endpoints
"""

from fastapi import APIRouter, Depends

from .deps import BankingSystem, get_banking_system, require_user
from .schemas import CheckDepositRequest
from ..users import User


router = APIRouter()


@router.post("", status_code=201)
async def submit_check_deposit(
    request: CheckDepositRequest,
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Submit a check for review"""
    deposit = system.check_deposits.submit(
        user.id, request.account_type, request.amount,
        request.front_image, request.back_image, request.check_number
    )
    return {"message": "Check deposit submitted successfully.", "deposit": deposit.to_public_dict()}


@router.get("")
async def list_check_deposits(
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """The caller's 20 most recent deposits, without images"""
    return {"deposits": [d.to_public_dict() for d in system.check_deposits.list_for_user(user.id)]}
