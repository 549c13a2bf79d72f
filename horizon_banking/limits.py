"""
Transaction Limits Module

Per-user daily transfer and withdrawal caps plus a per-transaction maximum.
Usage counters live in their own ``transaction_limits`` collection (one
document per user, id == user id) and reset on the first use of a new UTC
day. Limits are expressed in USD; crypto movements are not limited.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .audit import AuditTrail, AuditEventType
from .currency import Currency, Money, parse_positive_amount
from .errors import ConcurrentModification, InvalidInput, LimitExceeded
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


logger = get_logger("horizon.limits")

LIMITS_TABLE = "transaction_limits"


class LimitKind(Enum):
    TRANSFER = "transfer"
    WITHDRAWAL = "withdrawal"


def _usd(amount: Decimal) -> str:
    return Money(amount, Currency.USD).to_string()


@dataclass
class TransactionLimits(StorageRecord):
    """Configured caps and today's usage for one user"""
    user_id: str
    daily_transfer_limit: Decimal
    daily_withdrawal_limit: Decimal
    max_transaction_amount: Decimal
    last_reset_date: date
    today_transferred: Decimal = Decimal("0")
    today_withdrawn: Decimal = Decimal("0")
    limits_enabled: bool = True
    custom_limits: bool = False
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['last_reset_date'] = self.last_reset_date.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionLimits':
        for key in ('daily_transfer_limit', 'daily_withdrawal_limit', 'max_transaction_amount',
                    'today_transferred', 'today_withdrawn'):
            data[key] = Decimal(str(data[key]))
        data['last_reset_date'] = date.fromisoformat(data['last_reset_date'])
        return super().from_dict(data)

    def reset_if_new_day(self, today: date) -> bool:
        if self.last_reset_date == today:
            return False
        self.today_transferred = Decimal("0")
        self.today_withdrawn = Decimal("0")
        self.last_reset_date = today
        return True

    def daily_limit(self, kind: LimitKind) -> Decimal:
        if kind is LimitKind.TRANSFER:
            return self.daily_transfer_limit
        return self.daily_withdrawal_limit

    def used(self, kind: LimitKind) -> Decimal:
        if kind is LimitKind.TRANSFER:
            return self.today_transferred
        return self.today_withdrawn

    def remaining(self, kind: LimitKind) -> Decimal:
        return max(Decimal("0"), self.daily_limit(kind) - self.used(kind))

    def add_usage(self, kind: LimitKind, amount: Decimal) -> None:
        if kind is LimitKind.TRANSFER:
            self.today_transferred = max(Decimal("0"), self.today_transferred + amount)
        else:
            self.today_withdrawn = max(Decimal("0"), self.today_withdrawn + amount)

    def violation(self, kind: LimitKind, amount: Decimal) -> Optional[LimitExceeded]:
        """The limit ``amount`` would cross, or None when it fits"""
        if not self.limits_enabled:
            return None
        if amount > self.max_transaction_amount:
            return LimitExceeded(
                "exceeds_transaction_limit",
                f"Transaction amount exceeds maximum limit of {_usd(self.max_transaction_amount)}",
                self.max_transaction_amount
            )
        used = self.used(kind)
        limit = self.daily_limit(kind)
        if used + amount > limit:
            return LimitExceeded(
                f"exceeds_daily_{kind.value}_limit",
                f"Would exceed daily {kind.value} limit of {_usd(limit)}",
                limit, used
            )
        return None

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "daily_transfer_limit": str(self.daily_transfer_limit),
            "daily_withdrawal_limit": str(self.daily_withdrawal_limit),
            "max_transaction_amount": str(self.max_transaction_amount),
            "today_transferred": str(self.today_transferred),
            "today_withdrawn": str(self.today_withdrawn),
            "remaining_transfer_today": str(self.remaining(LimitKind.TRANSFER)),
            "remaining_withdrawal_today": str(self.remaining(LimitKind.WITHDRAWAL)),
            "limits_enabled": self.limits_enabled,
            "custom_limits": self.custom_limits,
            "last_reset_date": self.last_reset_date.isoformat()
        }


def _coerce_kind(value) -> LimitKind:
    if isinstance(value, LimitKind):
        return value
    try:
        return LimitKind(str(value).lower())
    except ValueError:
        raise InvalidInput(f"Unknown limit type: {value}")


def _today() -> date:
    return datetime.now(timezone.utc).date()


class TransactionLimitManager:
    """Loads, checks and updates per-user transaction limits"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 daily_transfer_limit: Decimal = Decimal("10000"),
                 daily_withdrawal_limit: Decimal = Decimal("5000"),
                 max_transaction_amount: Decimal = Decimal("25000"),
                 max_retries: int = 5):
        self.storage = storage
        self.audit = audit_trail
        self.defaults = {
            "daily_transfer_limit": Decimal(daily_transfer_limit),
            "daily_withdrawal_limit": Decimal(daily_withdrawal_limit),
            "max_transaction_amount": Decimal(max_transaction_amount),
        }
        self.max_retries = max_retries

    def load(self, user_id: str, today: Optional[date] = None) -> TransactionLimits:
        """
        Stored limits for a user, or unsaved defaults when none exist yet.

        Counters from an earlier day are zeroed on the returned object.
        """
        today = today or _today()
        data = self.storage.load(LIMITS_TABLE, user_id)
        if data:
            limits = TransactionLimits.from_dict(data)
        else:
            now = datetime.now(timezone.utc)
            limits = TransactionLimits(
                id=user_id, created_at=now, updated_at=now, user_id=user_id,
                last_reset_date=today, **self.defaults
            )
        limits.reset_if_new_day(today)
        return limits

    def save(self, limits: TransactionLimits) -> bool:
        """Versioned save; the first save of a user's limits inserts the document"""
        expected = limits.version
        limits.version = expected + 1
        limits.updated_at = datetime.now(timezone.utc)
        if expected == 0 and not self.storage.exists(LIMITS_TABLE, limits.id):
            self.storage.save(LIMITS_TABLE, limits.id, limits.to_dict())
            return True
        if self.storage.save_if_version(LIMITS_TABLE, limits.id, limits.to_dict(), expected):
            return True
        limits.version = expected
        return False

    def evaluate(self, user_id: str, kind, amount, today: Optional[date] = None) -> Dict[str, Any]:
        """Read-only check used before submitting a transaction"""
        kind = _coerce_kind(kind)
        value = parse_positive_amount(amount)
        limits = self.load(user_id, today)
        problem = limits.violation(kind, value)
        if problem is None:
            return {"allowed": True, "remaining": str(limits.remaining(kind)),
                    "limits": limits.to_public_dict()}
        return {
            "allowed": False,
            "reason": problem.reason,
            "message": problem.message,
            "limit": str(problem.limit),
            "remaining": str(limits.remaining(kind))
        }

    def consume(self, user_id: str, kind: LimitKind, amount: Decimal,
                today: Optional[date] = None) -> bool:
        """
        Check ``amount`` against the user's limits and count it as used.

        Call inside the caller's atomic() block so the usage rolls back with
        the balance change. Returns False on a version conflict.

        Raises:
            LimitExceeded: the amount would cross a limit
        """
        limits = self.load(user_id, today)
        problem = limits.violation(kind, amount)
        if problem is not None:
            log_action(logger, "warning", problem.message, user_id=user_id,
                       action="limit_exceeded", resource=problem.reason)
            raise problem
        limits.add_usage(kind, amount)
        return self.save(limits)

    def release(self, user_id: str, kind: LimitKind, amount: Decimal, used_on: date) -> bool:
        """Give back usage from a transaction that never posted, if it counted today"""
        limits = self.load(user_id)
        if limits.last_reset_date != used_on:
            return True
        limits.add_usage(kind, -amount)
        return self.save(limits)

    def update_limits(self, user_id: str, actor_id: Optional[str] = None,
                      daily_transfer_limit=None, daily_withdrawal_limit=None,
                      max_transaction_amount=None,
                      limits_enabled: Optional[bool] = None) -> TransactionLimits:
        """Admin override of a user's caps; marks the limits as custom"""
        changes: Dict[str, Any] = {}
        for name, value in (("daily_transfer_limit", daily_transfer_limit),
                            ("daily_withdrawal_limit", daily_withdrawal_limit),
                            ("max_transaction_amount", max_transaction_amount)):
            if value is not None:
                changes[name] = parse_positive_amount(value)
        if limits_enabled is not None:
            changes["limits_enabled"] = bool(limits_enabled)
        if not changes:
            raise InvalidInput("No limit changes supplied")

        for _ in range(self.max_retries):
            with self.storage.atomic():
                limits = self.load(user_id)
                for name, value in changes.items():
                    setattr(limits, name, value)
                limits.custom_limits = True
                if self.save(limits):
                    break
        else:
            raise ConcurrentModification(user_id)

        self.audit.log_event(AuditEventType.LIMITS_UPDATED, "limits", user_id, changes, actor_id=actor_id)
        return limits
