"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from .deps import BankingSystem, get_banking_system, require_user
from .schemas import AmountRequest, RecurringRequest, TransferRequest
from ..errors import UserNotFound
from ..ledger import EntryStatus
from ..users import User


router = APIRouter()


@router.get("")
async def list_transactions(
    limit: Optional[int] = Query(None, ge=1, le=500),
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """The caller's ledger, newest first"""
    entries = system.ledger.entries_for_user(user.id, limit=limit)
    return {"transactions": [e.to_public_dict() for e in entries]}


@router.post("/deposit")
async def deposit(
    request: AmountRequest,
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a deposit"""
    user, entry = system.recorder.deposit(user.id, request.amount, request.description, request.currency)
    return {
        "message": "Deposit successful",
        "balance": str(entry.balance_after),
        "transaction": entry.to_public_dict()
    }


@router.post("/withdrawal")
async def withdrawal(
    request: AmountRequest,
    response: Response,
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Withdraw funds, or queue the withdrawal when approvals are required"""
    user, entry = system.recorder.withdraw(user.id, request.amount, request.description, request.currency)
    if entry.status == EntryStatus.PENDING:
        response.status_code = 201
        message = "Withdrawal submitted for approval"
    else:
        message = "Withdrawal successful"
    return {
        "message": message,
        "balance": str(entry.balance_after),
        "transaction": entry.to_public_dict()
    }


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Send funds to another user by email"""
    recipient = system.user_manager.get_user_by_email(request.to_email)
    if not recipient:
        raise UserNotFound(request.to_email)

    result = system.recorder.transfer(user.id, recipient.id, request.amount,
                                      request.description, request.currency)
    return {
        "message": "Transfer successful",
        "balance": str(result.debit_entry.balance_after),
        "transaction": result.debit_entry.to_public_dict()
    }


@router.post("/recurring/create", status_code=201)
async def create_recurring(
    request: RecurringRequest,
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a recurring debit or credit"""
    rule = system.recurring.create_recurring(
        user.id, request.type, request.amount, request.interval, request.description
    )
    return {"message": "Recurring transaction created", "recurring": rule}


@router.get("/recurring")
async def list_recurring(
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    return {"recurring": system.recurring.list_recurring(user.id)}
