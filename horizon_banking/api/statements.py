"""
Statement endpoints
"""

from fastapi import APIRouter, Depends

from .deps import BankingSystem, get_banking_system, require_user
from .schemas import StatementRequest
from ..users import User


router = APIRouter()


@router.post("/request", status_code=201)
async def request_statement(
    request: StatementRequest,
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Queue a statement; the worker renders and mails it"""
    statement = system.statements.request_statement(
        user.id, request.account_type, request.start_date, request.end_date
    )
    return {"message": "Statement requested", "statement": statement.to_public_dict()}


@router.get("")
async def list_statements(
    user: User = Depends(require_user),
    system: BankingSystem = Depends(get_banking_system)
):
    return {"statements": [s.to_public_dict() for s in system.statements.list_statements(user.id)]}
