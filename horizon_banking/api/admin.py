"""
Admin console endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from .auth import issue_session
from .deps import BankingSystem, get_banking_system
from .limits import require_limits
from .schemas import (
    AdminTransactionRequest, CheckDepositReviewRequest, DateOverrideRequest, LimitUpdateRequest,
    LoginRequest, RegisterRequest
)
from ..auth import Identity, require_admin
from ..errors import FeatureDisabled, InvalidInput
from ..limits import TransactionLimitManager
from ..users import Role


router = APIRouter()


def _require_pending_tx(system: BankingSystem) -> None:
    if not system.recorder.enable_pending:
        raise FeatureDisabled("Pending transactions are disabled")


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInput(f"Invalid date: {value}")


@router.post("/login")
async def admin_login(
    request: LoginRequest,
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
):
    """Admin-only login; a non-admin account is rejected like a bad password"""
    user = system.user_manager.authenticate(request.email, request.password, role=Role.ADMIN)
    token = issue_session(response, user)
    return {"success": True, "access_token": token, "token_type": "bearer"}


@router.post("/register", status_code=201)
async def admin_register(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register the first admin; closed once any admin exists"""
    user = system.user_manager.register_first_admin(request.name, request.email, request.password)
    return {"success": True, "user": user.to_public_dict()}


@router.get("/users")
async def list_users(
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    return {"users": [u.to_public_dict() for u in system.user_manager.list_users()]}


@router.get("/overview")
async def overview(
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Totals, user list and latest activity"""
    return system.reporting_engine.overview()


@router.patch("/users/{user_id}/verify")
async def toggle_verification(
    user_id: str,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    user = system.user_manager.toggle_verified(user_id, actor_id=admin.user_id)
    return {"success": True, "verified": user.verified}


@router.post("/users/{user_id}/verify")
async def verify_user(
    user_id: str,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    user = system.user_manager.set_verified(user_id, actor_id=admin.user_id)
    return {"success": True, "verified": user.verified}


@router.post("/users/{user_id}/transactions", status_code=201)
async def adjust_balance(
    user_id: str,
    request: AdminTransactionRequest,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Post a transaction on a user's behalf"""
    user, entry = system.recorder.record_transaction(
        user_id, request.type, request.amount, request.description,
        request.currency, actor_id=admin.user_id, enforce_limits=False
    )
    return {
        "success": True,
        "balance": str(entry.balance_after),
        "transaction": entry.to_public_dict()
    }


@router.get("/transactions/pending")
async def pending_transactions(
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    _require_pending_tx(system)
    return {"transactions": [e.to_public_dict() for e in system.ledger.pending_entries()]}


@router.patch("/transactions/{entry_id}/date")
async def override_date(
    entry_id: str,
    request: DateOverrideRequest,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Change the display date of a transaction; the first pre-edit date is kept"""
    _require_pending_tx(system)
    entry = system.ledger.edit_date(entry_id, _parse_date(request.date), actor_id=admin.user_id)
    return {"success": True, "transaction": entry.to_public_dict()}


@router.post("/transactions/{entry_id}/approve")
async def approve_transaction(
    entry_id: str,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    user, entry = system.recorder.approve_pending(entry_id, actor_id=admin.user_id)
    return {"success": True, "transaction": entry.to_public_dict()}


@router.post("/transactions/{entry_id}/reject")
async def reject_transaction(
    entry_id: str,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    entry = system.recorder.reject_pending(entry_id, actor_id=admin.user_id)
    return {"success": True, "transaction": entry.to_public_dict()}


@router.patch("/users/{user_id}/limits")
async def update_limits(
    user_id: str,
    request: LimitUpdateRequest,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system),
    limits: TransactionLimitManager = Depends(require_limits)
):
    """Set custom caps for one user"""
    system.user_manager.require_user(user_id)
    updated = limits.update_limits(
        user_id, actor_id=admin.user_id,
        daily_transfer_limit=request.daily_transfer_limit,
        daily_withdrawal_limit=request.daily_withdrawal_limit,
        max_transaction_amount=request.max_transaction_amount,
        limits_enabled=request.limits_enabled
    )
    return {"success": True, "limits": updated.to_public_dict()}


@router.get("/check-deposits")
async def list_check_deposits(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Review queue with counts per status"""
    deposits, counts, total = system.check_deposits.list_all(status, page, limit)
    return {
        "success": True,
        "deposits": [d.to_public_dict(include_images=True) for d in deposits],
        "counts": counts,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": -(-total // limit)
        }
    }


@router.get("/check-deposits/{deposit_id}")
async def get_check_deposit(
    deposit_id: str,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    deposit = system.check_deposits.get(deposit_id)
    return {"success": True, "deposit": deposit.to_public_dict(include_images=True)}


@router.patch("/check-deposits/{deposit_id}")
async def review_check_deposit(
    deposit_id: str,
    request: CheckDepositReviewRequest,
    admin: Identity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Approve (credits the balance) or reject a pending check"""
    deposit, entry = system.check_deposits.review(
        deposit_id, request.action, actor_id=admin.user_id,
        rejection_reason=request.rejection_reason, notes=request.notes
    )
    if entry is not None:
        account = deposit.account_type.value
        message = f"Deposit approved. ${entry.amount} has been added to the user's {account} account."
    else:
        message = "Deposit rejected."
    return {
        "success": True,
        "message": message,
        "deposit": deposit.to_public_dict(),
        "transaction": entry.to_public_dict() if entry is not None else None
    }
