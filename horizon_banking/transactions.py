"""
Transaction Recorder Module

Applies a signed balance delta to a user and appends the matching ledger
entry as one unit of work. Balance writes use an optimistic version check;
on conflict the whole read-modify-write is retried. The customer email is
recorded in the outbox inside the same unit of work, and USD withdrawals
and transfers are counted against the user's daily limits there too.
"""

import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Tuple, TypeVar, Union

from .audit import AuditTrail, AuditEventType
from .currency import Currency, Money, parse_positive_amount
from .errors import (
    ConcurrentModification, FeatureDisabled, InsufficientFunds, InvalidAmount,
    InvalidInput, PersistenceError
)
from .ledger import EntryStatus, Ledger, LedgerEntry, TransactionType
from .limits import LimitKind, TransactionLimitManager
from .logging_config import get_logger, log_action
from .outbox import MessageKind, Outbox
from .storage import StorageInterface
from .users import User, UserManager


logger = get_logger("horizon.transactions")

T = TypeVar("T")


class _VersionConflict(Exception):
    """A user document changed between read and write"""


@dataclass
class TransferResult:
    sender: User
    recipient: User
    debit_entry: LedgerEntry
    credit_entry: LedgerEntry


def _coerce_type(value: Union[str, TransactionType]) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).lower())
    except ValueError:
        raise InvalidInput(f"Unknown transaction type: {value}")


def _coerce_currency(value: Union[str, Currency, None]) -> Currency:
    if value is None:
        return Currency.USD
    if isinstance(value, Currency):
        return value
    return Currency.from_code(value)


_LIMITED_TYPES = {
    TransactionType.WITHDRAWAL: LimitKind.WITHDRAWAL,
    TransactionType.TRANSFER_OUT: LimitKind.TRANSFER,
}


def balance_field(currency: Currency) -> str:
    return "crypto_balance" if currency is Currency.BTC else "balance"


class TransactionRecorder:
    """Balance mutations plus their ledger entries"""

    def __init__(self, storage: StorageInterface, user_manager: UserManager,
                 ledger: Ledger, outbox: Outbox, audit_trail: AuditTrail,
                 allow_negative_balance: bool = False, max_retries: int = 5,
                 enable_pending: bool = False,
                 limits: Optional[TransactionLimitManager] = None):
        self.storage = storage
        self.users = user_manager
        self.ledger = ledger
        self.outbox = outbox
        self.audit = audit_trail
        self.allow_negative_balance = allow_negative_balance
        self.max_retries = max_retries
        self.enable_pending = enable_pending
        self.limits = limits

    # Helpers

    def _amount(self, amount, currency: Currency) -> Money:
        money = Money(parse_positive_amount(amount), currency)
        if not money.is_positive():
            raise InvalidAmount("Amount is below the currency's smallest unit")
        return money

    def _apply(self, user: User, transaction_type: TransactionType, money: Money) -> Decimal:
        """Mutate the in-memory user balance and return the new balance"""
        field_name = balance_field(money.currency)
        current = Money(getattr(user, field_name), money.currency)

        if transaction_type.is_inflow:
            new_balance = current + money
        else:
            new_balance = current - money
            if new_balance.is_negative() and not self.allow_negative_balance:
                raise InsufficientFunds(available=current.amount, requested=money.amount)

        setattr(user, field_name, new_balance.amount)
        return new_balance.amount

    def _save(self, user: User) -> None:
        if not self.users.save_user_versioned(user):
            raise _VersionConflict(user.id)

    def _consume_limit(self, user_id: str, kind: Optional[LimitKind], money: Money) -> None:
        """Count an outflow against the user's daily limits (USD only)"""
        if self.limits is None or kind is None or money.currency is not Currency.USD:
            return
        if not self.limits.consume(user_id, kind, money.amount):
            raise _VersionConflict(user_id)

    def _notify(self, user: User, entry: LedgerEntry) -> None:
        currency = Currency.from_code(entry.currency)
        if entry.status == EntryStatus.PENDING:
            kind = MessageKind.TRANSACTION_PENDING
        else:
            kind = MessageKind.TRANSACTION_ALERT
        self.outbox.enqueue(kind, user.id, user.email, {
            "name": user.name,
            "type": entry.type.value.replace("_", " "),
            "direction": "credited" if entry.type.is_inflow else "debited",
            "amount": Money(entry.amount, currency).to_string(),
            "balance_after": Money(entry.balance_after, currency).to_string(),
            "description": entry.description,
            "date": entry.date.strftime("%Y-%m-%d %H:%M UTC"),
            "reference": entry.reference
        })

    def _with_retry(self, user_id: str, work: Callable[[], T]) -> T:
        """Run work inside atomic(), retrying on optimistic-lock conflicts"""
        for attempt in range(1, self.max_retries + 1):
            try:
                with self.storage.atomic():
                    return work()
            except _VersionConflict:
                log_action(logger, "warning", f"Version conflict, attempt {attempt}",
                           user_id=user_id, action="balance_retry")
            except sqlite3.Error as e:
                logger.exception("Storage failure while recording transaction")
                raise PersistenceError("Failed to persist transaction") from e
        raise ConcurrentModification(user_id)

    def _log(self, event: AuditEventType, entry: LedgerEntry, actor_id: Optional[str]) -> None:
        self.audit.log_event(event, "transaction", entry.id, {
            "user_id": entry.user_id,
            "type": entry.type,
            "amount": entry.amount,
            "currency": entry.currency,
            "balance_after": entry.balance_after,
            "status": entry.status
        }, actor_id=actor_id)
        log_action(logger, "info", f"{entry.type.value} {entry.amount} {entry.currency} {entry.status.value}",
                   user_id=entry.user_id, action=event.value, resource=entry.id)

    # Core operation

    def record_transaction(self, user_id: str,
                           transaction_type: Union[str, TransactionType],
                           amount, description: Optional[str] = None,
                           currency: Union[str, Currency, None] = Currency.USD,
                           related_user_id: Optional[str] = None,
                           actor_id: Optional[str] = None,
                           before_save: Optional[Callable[[User, LedgerEntry], None]] = None,
                           enforce_limits: bool = True) -> Tuple[User, LedgerEntry]:
        """
        Apply a balance change and append its ledger entry.

        Args:
            user_id: Owner of the balance
            transaction_type: deposit/credit/transfer_in add; everything else subtracts
            amount: Positive amount (number or numeric string)
            description: Free text shown on statements
            currency: USD mutates ``balance``, BTC mutates ``crypto_balance``
            related_user_id: Counterparty for transfers
            actor_id: Who initiated the change (for the audit trail)
            before_save: Called with the freshly loaded user and the not yet
                appended entry, inside the same unit of work and before the
                versioned save. Changes it makes to the user are saved together
                with the balance; anything it raises rolls the whole change back.
            enforce_limits: Count withdrawals and outgoing transfers against the daily limits

        Returns:
            (updated user, created ledger entry)

        Raises:
            InvalidAmount: amount missing, non-numeric, non-finite or not positive
            UserNotFound: user_id does not resolve
            InsufficientFunds: outflow would overdraw the balance
            LimitExceeded: a withdrawal would cross the user's limits
            ConcurrentModification: optimistic retries exhausted
            PersistenceError: storage failure
        """
        transaction_type = _coerce_type(transaction_type)
        currency = _coerce_currency(currency)
        money = self._amount(amount, currency)
        description = description or f"{transaction_type.value.replace('_', ' ').title()}"
        limit_kind = _LIMITED_TYPES.get(transaction_type) if enforce_limits else None

        def work():
            user = self.users.require_user(user_id)
            new_balance = self._apply(user, transaction_type, money)
            entry = self.ledger.new_entry(
                user.id, transaction_type, currency.code, money.amount, description,
                new_balance, related_user_id=related_user_id
            )
            if before_save is not None:
                before_save(user, entry)
            self._consume_limit(user.id, limit_kind, money)
            self._save(user)
            self.ledger.append(entry)
            self._notify(user, entry)
            return user, entry

        user, entry = self._with_retry(user_id, work)
        self._log(AuditEventType.TRANSACTION_RECORDED, entry, actor_id or user_id)
        return user, entry

    def deposit(self, user_id: str, amount, description: Optional[str] = None,
                currency: Union[str, Currency, None] = Currency.USD) -> Tuple[User, LedgerEntry]:
        return self.record_transaction(user_id, TransactionType.DEPOSIT, amount,
                                       description or "Deposit to checking account", currency)

    def withdraw(self, user_id: str, amount, description: Optional[str] = None,
                 currency: Union[str, Currency, None] = Currency.USD) -> Tuple[User, LedgerEntry]:
        """Post a withdrawal, or queue it for approval when pending transactions are enabled"""
        if self.enable_pending:
            return self.request_withdrawal(user_id, amount, description, currency)
        return self.record_transaction(user_id, TransactionType.WITHDRAWAL, amount,
                                       description or "ATM Withdrawal", currency)

    def transfer(self, from_user_id: str, to_user_id: str, amount,
                 description: Optional[str] = None,
                 currency: Union[str, Currency, None] = Currency.USD) -> TransferResult:
        """Move funds between two users in one unit of work"""
        if from_user_id == to_user_id:
            raise InvalidInput("Cannot transfer to the same account")
        currency = _coerce_currency(currency)
        money = self._amount(amount, currency)
        description = description or "Internal transfer"

        def work():
            sender = self.users.require_user(from_user_id)
            recipient = self.users.require_user(to_user_id)
            sender_balance = self._apply(sender, TransactionType.TRANSFER_OUT, money)
            recipient_balance = self._apply(recipient, TransactionType.TRANSFER_IN, money)
            self._consume_limit(sender.id, LimitKind.TRANSFER, money)
            self._save(sender)
            self._save(recipient)

            debit = self.ledger.append(self.ledger.new_entry(
                sender.id, TransactionType.TRANSFER_OUT, currency.code, money.amount,
                description, sender_balance, related_user_id=recipient.id
            ))
            credit = self.ledger.append(self.ledger.new_entry(
                recipient.id, TransactionType.TRANSFER_IN, currency.code, money.amount,
                description, recipient_balance, related_user_id=sender.id
            ))
            self._notify(sender, debit)
            self._notify(recipient, credit)
            return TransferResult(sender, recipient, debit, credit)

        result = self._with_retry(from_user_id, work)
        self._log(AuditEventType.TRANSACTION_RECORDED, result.debit_entry, from_user_id)
        self._log(AuditEventType.TRANSACTION_RECORDED, result.credit_entry, from_user_id)
        return result

    # Pending withdrawals

    def _require_pending_enabled(self) -> None:
        if not self.enable_pending:
            raise FeatureDisabled("Pending transactions are disabled")

    def request_withdrawal(self, user_id: str, amount, description: Optional[str] = None,
                           currency: Union[str, Currency, None] = Currency.USD) -> Tuple[User, LedgerEntry]:
        """
        Queue a withdrawal for admin approval; the balance is untouched.

        The amount counts against today's withdrawal limit as soon as it is
        requested and is given back if the request is rejected.
        """
        self._require_pending_enabled()
        currency = _coerce_currency(currency)
        money = self._amount(amount, currency)

        def work():
            user = self.users.require_user(user_id)
            available = getattr(user, balance_field(currency))
            if money.amount > available and not self.allow_negative_balance:
                raise InsufficientFunds(available=available, requested=money.amount)
            self._consume_limit(user.id, LimitKind.WITHDRAWAL, money)
            entry = self.ledger.append(self.ledger.new_entry(
                user.id, TransactionType.WITHDRAWAL, currency.code, money.amount,
                description or "ATM Withdrawal", available, status=EntryStatus.PENDING
            ))
            self._notify(user, entry)
            return user, entry

        user, entry = self._with_retry(user_id, work)
        self._log(AuditEventType.TRANSACTION_RECORDED, entry, user_id)
        return user, entry

    def approve_pending(self, entry_id: str, actor_id: Optional[str] = None) -> Tuple[User, LedgerEntry]:
        """Apply a pending entry's balance change and mark it posted"""
        self._require_pending_enabled()

        def work():
            entry = self.ledger.get(entry_id)
            if entry.status != EntryStatus.PENDING:
                raise InvalidInput(f"Transaction is already {entry.status.value}")
            user = self.users.require_user(entry.user_id)
            money = Money(entry.amount, Currency.from_code(entry.currency))
            new_balance = self._apply(user, entry.type, money)
            self._save(user)
            self.ledger.settle(entry, EntryStatus.POSTED, new_balance)
            self._notify(user, entry)
            return user, entry

        user, entry = self._with_retry(entry_id, work)
        self._log(AuditEventType.TRANSACTION_APPROVED, entry, actor_id)
        return user, entry

    def reject_pending(self, entry_id: str, actor_id: Optional[str] = None) -> LedgerEntry:
        self._require_pending_enabled()

        def work():
            entry = self.ledger.get(entry_id)
            if entry.status != EntryStatus.PENDING:
                raise InvalidInput(f"Transaction is already {entry.status.value}")
            self.ledger.settle(entry, EntryStatus.REJECTED)
            kind = _LIMITED_TYPES.get(entry.type)
            if self.limits is not None and kind is not None and entry.currency == Currency.USD.code:
                if not self.limits.release(entry.user_id, kind, entry.amount, entry.created_at.date()):
                    raise _VersionConflict(entry.user_id)
            return entry

        entry = self._with_retry(entry_id, work)
        self._log(AuditEventType.TRANSACTION_REJECTED, entry, actor_id)
        return entry
