"""
Recurring Transfers Module

Registers recurring debit/credit rules on the user document and runs the
rules that are due through the transaction recorder.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .currency import Currency, Money, parse_positive_amount
from .errors import BankingError, ConcurrentModification, InvalidInput
from .ledger import TransactionType
from .logging_config import get_logger, log_action
from .outbox import MessageKind, Outbox
from .storage import StorageInterface
from .transactions import TransactionRecorder
from .users import UserManager


logger = get_logger("horizon.recurring")

RULE_TYPES = {"debit": TransactionType.DEBIT, "credit": TransactionType.CREDIT}
INTERVALS = ("daily", "weekly", "monthly")


def _last_run_date(rule: Dict[str, Any]) -> Optional[date]:
    last_run = rule.get("last_run")
    if not last_run:
        return None
    return datetime.fromisoformat(last_run).date()


def is_due(rule: Dict[str, Any], today: date) -> bool:
    """
    Decide whether a rule should run on ``today``.

    daily: never run, or last run on an earlier day
    weekly: never run, or 7+ days since last run
    monthly: never run, or last run in an earlier calendar month
    """
    if rule.get("active") is False:
        return False

    last = _last_run_date(rule)
    if last is None:
        return True

    interval = rule.get("interval", "monthly")
    if interval == "daily":
        return last < today
    if interval == "weekly":
        return (today - last).days >= 7
    return (today.year - last.year) * 12 + (today.month - last.month) >= 1


class _RuleNotDue(Exception):
    """Another run already executed the rule, or it was removed"""


def _stamp_last_run(rule_id: str, ran_at: datetime, today: date):
    """Mark a rule as run on the user document the balance change is saved with"""
    def stamp(user, entry):
        for rule in user.recurring:
            if rule["id"] == rule_id and is_due(rule, today):
                rule["last_run"] = ran_at.isoformat()
                return
        raise _RuleNotDue(rule_id)
    return stamp


class RecurringTransferService:
    """Recurring transfer registration and execution"""

    def __init__(self, storage: StorageInterface, user_manager: UserManager,
                 recorder: TransactionRecorder, outbox: Outbox, audit_trail: AuditTrail):
        self.storage = storage
        self.users = user_manager
        self.recorder = recorder
        self.outbox = outbox
        self.audit = audit_trail

    def create_recurring(self, user_id: str, rule_type: str, amount, interval: str,
                         description: Optional[str] = None) -> Dict[str, Any]:
        """
        Append a recurring rule to the user's list.

        Raises:
            InvalidInput: unknown type or interval
            InvalidAmount: amount not positive
            UserNotFound: user_id does not resolve
        """
        if rule_type not in RULE_TYPES or interval not in INTERVALS:
            raise InvalidInput("Invalid request")
        value = parse_positive_amount(amount)

        rule = {
            "id": str(uuid.uuid4()),
            "type": rule_type,
            "amount": str(value),
            "interval": interval,
            "description": description or f"{rule_type} scheduled transaction",
            "last_run": None,
            "active": True,
            "created_at": datetime.now(timezone.utc).isoformat()
        }

        for _ in range(self.users.max_retries):
            with self.storage.atomic():
                user = self.users.require_user(user_id)
                user.recurring.append(dict(rule))
                if not self.users.save_user_versioned(user):
                    continue
                self.outbox.enqueue(MessageKind.RECURRING_SETUP, user.id, user.email, {
                    "name": user.name,
                    "type": rule_type,
                    "amount": Money(value, Currency.USD).to_string(),
                    "interval": interval,
                    "description": rule["description"]
                })
                break
        else:
            raise ConcurrentModification(user_id)

        self.audit.log_event(AuditEventType.RECURRING_CREATED, "user", user_id, rule, actor_id=user_id)
        return rule

    def list_recurring(self, user_id: str) -> List[Dict[str, Any]]:
        return list(self.users.require_user(user_id).recurring)

    def run_due(self, today: Optional[date] = None) -> Dict[str, int]:
        """Execute every due rule for every user"""
        now = datetime.now(timezone.utc)
        today = today or now.date()
        results = {"checked": 0, "executed": 0, "failed": 0}

        for user in self.users.list_users():
            for rule in user.recurring:
                results["checked"] += 1
                if not is_due(rule, today):
                    continue
                try:
                    self.recorder.record_transaction(
                        user.id, RULE_TYPES[rule["type"]], Decimal(rule["amount"]),
                        rule.get("description"), Currency.USD,
                        before_save=_stamp_last_run(rule["id"], now, today)
                    )
                    results["executed"] += 1
                except _RuleNotDue:
                    continue
                except BankingError as e:
                    results["failed"] += 1
                    log_action(logger, "warning", f"Recurring rule skipped: {e.message}",
                               user_id=user.id, action="recurring_failed", resource=rule["id"])

        log_action(logger, "info", "Recurring run complete", action="recurring_run", extra=results)
        return results
