"""
Check Deposit Module

Users submit a photographed check; an admin approves or rejects it.
Approval credits the user's USD balance through the transaction recorder,
and the deposit is marked approved inside the same unit of work as the
balance change, so a check can never be credited twice.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .audit import AuditTrail, AuditEventType
from .currency import Currency, Money, parse_positive_amount
from .errors import CheckDepositNotFound, InvalidAmount, InvalidInput
from .ledger import LedgerEntry, TransactionType
from .logging_config import get_logger, log_action
from .outbox import MessageKind, Outbox
from .storage import StorageInterface, StorageRecord
from .transactions import TransactionRecorder
from .users import User, UserManager


logger = get_logger("horizon.check_deposits")

CHECK_DEPOSITS_TABLE = "check_deposits"


class CheckAccountType(Enum):
    # Both credit the single USD balance
    CHECKING = "checking"
    SAVINGS = "savings"


class CheckDepositStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class CheckDeposit(StorageRecord):
    """A submitted check awaiting (or finished with) review"""
    user_id: str
    user_email: str
    user_name: str
    account_type: CheckAccountType
    amount: Decimal
    front_image: str
    back_image: str
    check_number: Optional[str] = None
    status: CheckDepositStatus = CheckDepositStatus.PENDING
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['account_type'] = self.account_type.value
        result['status'] = self.status.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CheckDeposit':
        data['account_type'] = CheckAccountType(data['account_type'])
        data['status'] = CheckDepositStatus(data['status'])
        data['amount'] = Decimal(str(data['amount']))
        if data.get('reviewed_at'):
            data['reviewed_at'] = datetime.fromisoformat(data['reviewed_at'])
        return super().from_dict(data)

    def to_public_dict(self, include_images: bool = False) -> Dict[str, Any]:
        result = self.to_dict()
        result.pop('version')
        if not include_images:
            result.pop('front_image')
            result.pop('back_image')
        return result


class CheckDepositService:
    """Submission and admin review of check deposits"""

    def __init__(self, storage: StorageInterface, user_manager: UserManager,
                 recorder: TransactionRecorder, outbox: Outbox, audit_trail: AuditTrail):
        self.storage = storage
        self.users = user_manager
        self.recorder = recorder
        self.outbox = outbox
        self.audit = audit_trail

    def submit(self, user_id: str, account_type, amount, front_image: Optional[str],
               back_image: Optional[str], check_number: Optional[str] = None) -> CheckDeposit:
        """
        Record a check for review; the balance is not touched until approval.

        Raises:
            InvalidInput: missing images or unknown account type
            InvalidAmount: amount not positive
            UserNotFound: user_id does not resolve
        """
        if not account_type or not front_image or not back_image:
            raise InvalidInput("Missing required fields")
        try:
            account = CheckAccountType(str(account_type).lower())
        except ValueError:
            raise InvalidInput(f"Unknown account type: {account_type}")
        money = Money(parse_positive_amount(amount), Currency.USD)
        if not money.is_positive():
            raise InvalidAmount("Amount is below the currency's smallest unit")

        with self.storage.atomic():
            user = self.users.require_user(user_id)
            now = datetime.now(timezone.utc)
            deposit = CheckDeposit(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user.id,
                user_email=user.email,
                user_name=user.name,
                account_type=account,
                amount=money.amount,
                front_image=front_image,
                back_image=back_image,
                check_number=check_number
            )
            self.storage.save(CHECK_DEPOSITS_TABLE, deposit.id, deposit.to_dict())
            self.outbox.enqueue(MessageKind.CHECK_DEPOSIT_RECEIVED, user.id, user.email, {
                "name": user.name,
                "amount": money.to_string(),
                "account_type": account.value,
                "check_number": check_number or "n/a"
            })

        self.audit.log_event(AuditEventType.CHECK_DEPOSIT_SUBMITTED, "check_deposit", deposit.id, {
            "user_id": user_id, "amount": deposit.amount, "account_type": account
        }, actor_id=user_id)
        log_action(logger, "info", f"Check deposit of {deposit.amount} submitted",
                   user_id=user_id, action="check_deposit_submitted", resource=deposit.id)
        return deposit

    def get(self, deposit_id: str) -> CheckDeposit:
        data = self.storage.load(CHECK_DEPOSITS_TABLE, deposit_id)
        if not data:
            raise CheckDepositNotFound(deposit_id)
        return CheckDeposit.from_dict(data)

    def list_for_user(self, user_id: str, limit: int = 20) -> List[CheckDeposit]:
        """The user's deposits, newest first"""
        deposits = [CheckDeposit.from_dict(d)
                    for d in self.storage.find(CHECK_DEPOSITS_TABLE, {"user_id": user_id})]
        deposits.sort(key=lambda d: d.created_at, reverse=True)
        return deposits[:limit]

    def list_all(self, status: Optional[str] = None, page: int = 1,
                 limit: int = 20) -> Tuple[List[CheckDeposit], Dict[str, int], int]:
        """
        One page of deposits (newest first) for the review queue.

        Returns:
            (page of deposits, counts per status, total matching ``status``)
        """
        deposits = [CheckDeposit.from_dict(d) for d in self.storage.load_all(CHECK_DEPOSITS_TABLE)]
        counts = {s.value: 0 for s in CheckDepositStatus}
        for deposit in deposits:
            counts[deposit.status.value] += 1
        counts["total"] = len(deposits)

        if status and status != "all":
            try:
                wanted = CheckDepositStatus(status)
            except ValueError:
                raise InvalidInput(f"Unknown status: {status}")
            deposits = [d for d in deposits if d.status == wanted]

        deposits.sort(key=lambda d: d.created_at, reverse=True)
        start = (page - 1) * limit
        return deposits[start:start + limit], counts, len(deposits)

    def _save_reviewed(self, deposit: CheckDeposit) -> None:
        expected = deposit.version
        deposit.version = expected + 1
        deposit.updated_at = datetime.now(timezone.utc)
        if not self.storage.save_if_version(CHECK_DEPOSITS_TABLE, deposit.id, deposit.to_dict(), expected):
            raise InvalidInput("Deposit has already been processed")

    def _load_pending(self, deposit_id: str) -> CheckDeposit:
        deposit = self.get(deposit_id)
        if deposit.status != CheckDepositStatus.PENDING:
            raise InvalidInput("Deposit has already been processed")
        return deposit

    def approve(self, deposit_id: str, actor_id: Optional[str] = None,
                notes: Optional[str] = None) -> Tuple[CheckDeposit, LedgerEntry]:
        """Credit the check amount and mark the deposit approved"""
        deposit = self._load_pending(deposit_id)
        reviewed: Dict[str, CheckDeposit] = {}

        def mark_approved(user: User, entry: LedgerEntry) -> None:
            current = self._load_pending(deposit_id)
            current.status = CheckDepositStatus.APPROVED
            current.reviewed_by = actor_id
            current.reviewed_at = datetime.now(timezone.utc)
            current.transaction_id = entry.id
            if notes:
                current.notes = notes
            self._save_reviewed(current)
            reviewed["deposit"] = current

        description = "Mobile check deposit"
        if deposit.check_number:
            description = f"{description} #{deposit.check_number}"
        _, entry = self.recorder.record_transaction(
            deposit.user_id, TransactionType.DEPOSIT, deposit.amount, description,
            Currency.USD, actor_id=actor_id, before_save=mark_approved, enforce_limits=False
        )

        approved = reviewed["deposit"]
        self.audit.log_event(AuditEventType.CHECK_DEPOSIT_APPROVED, "check_deposit", approved.id, {
            "user_id": approved.user_id, "amount": approved.amount, "transaction_id": entry.id
        }, actor_id=actor_id)
        return approved, entry

    def reject(self, deposit_id: str, reason: Optional[str], actor_id: Optional[str] = None,
               notes: Optional[str] = None) -> CheckDeposit:
        if not reason:
            raise InvalidInput("Rejection reason is required")

        with self.storage.atomic():
            deposit = self._load_pending(deposit_id)
            deposit.status = CheckDepositStatus.REJECTED
            deposit.rejection_reason = reason
            deposit.reviewed_by = actor_id
            deposit.reviewed_at = datetime.now(timezone.utc)
            if notes:
                deposit.notes = notes
            self._save_reviewed(deposit)
            self.outbox.enqueue(MessageKind.CHECK_DEPOSIT_REJECTED, deposit.user_id, deposit.user_email, {
                "name": deposit.user_name,
                "amount": Money(deposit.amount, Currency.USD).to_string(),
                "reason": reason
            })

        self.audit.log_event(AuditEventType.CHECK_DEPOSIT_REJECTED, "check_deposit", deposit.id, {
            "user_id": deposit.user_id, "reason": reason
        }, actor_id=actor_id)
        return deposit

    def review(self, deposit_id: str, action: Optional[str], actor_id: Optional[str] = None,
               rejection_reason: Optional[str] = None,
               notes: Optional[str] = None) -> Tuple[CheckDeposit, Optional[LedgerEntry]]:
        """Dispatch an admin decision: ``approve`` or ``reject``"""
        if action == "approve":
            return self.approve(deposit_id, actor_id, notes)
        if action == "reject":
            return self.reject(deposit_id, rejection_reason, actor_id, notes), None
        raise InvalidInput('Invalid action. Must be "approve" or "reject"')
