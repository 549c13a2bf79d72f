"""
Statement Module

Users request a statement for an account and date range; the worker renders
pending requests from the ledger and mails them. A statement moves from
pending to sent or failed exactly once.
"""

import csv
import io
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .audit import AuditTrail, AuditEventType
from .currency import Currency
from .errors import InvalidInput, StatementNotFound
from .ledger import Ledger
from .logging_config import get_logger, log_action
from .outbox import MailTransport, MessageKind, OutboxMessage, render
from .storage import StorageInterface, StorageRecord
from .users import UserManager


logger = get_logger("horizon.statements")

STATEMENTS_TABLE = "statements"


class AccountType(Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"
    CRYPTO = "crypto"

    @property
    def currency(self) -> Currency:
        return Currency.BTC if self is AccountType.CRYPTO else Currency.USD


class StatementStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class Statement(StorageRecord):
    user_id: str
    account_type: AccountType
    start_date: datetime
    end_date: datetime
    status: StatementStatus = StatementStatus.PENDING
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def requested_at(self) -> datetime:
        return self.created_at

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['account_type'] = self.account_type.value
        result['status'] = self.status.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Statement':
        data['account_type'] = AccountType(data['account_type'])
        data['status'] = StatementStatus(data['status'])
        for key in ('start_date', 'end_date', 'sent_at'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return super().from_dict(data)

    def to_public_dict(self) -> Dict[str, Any]:
        result = self.to_dict()
        result['requested_at'] = result['created_at']
        return result


def _as_datetime(value: Union[str, date, datetime], end_of_day: bool = False) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidInput(f"Invalid date: {value}")
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    elif end_of_day and value.time() == time.min:
        value = datetime.combine(value.date(), time.max, value.tzinfo)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class StatementService:
    """Statement requests and delivery"""

    def __init__(self, storage: StorageInterface, user_manager: UserManager,
                 ledger: Ledger, transport: MailTransport, audit_trail: AuditTrail):
        self.storage = storage
        self.users = user_manager
        self.ledger = ledger
        self.transport = transport
        self.audit = audit_trail

    def _save(self, statement: Statement) -> None:
        statement.updated_at = datetime.now(timezone.utc)
        self.storage.save(STATEMENTS_TABLE, statement.id, statement.to_dict())

    def request_statement(self, user_id: str, account_type: str,
                          start_date: Union[str, date, datetime],
                          end_date: Union[str, date, datetime]) -> Statement:
        """
        Create a pending statement request.

        Raises:
            InvalidInput: unknown account type, unparsable dates or start after end
            UserNotFound: user_id does not resolve
        """
        if not account_type or not start_date or not end_date:
            raise InvalidInput("Start date, end date, and account type are required")
        try:
            account = AccountType(str(account_type).lower())
        except ValueError:
            raise InvalidInput(f"Unknown account type: {account_type}")

        start = _as_datetime(start_date)
        end = _as_datetime(end_date, end_of_day=True)
        if start > end:
            raise InvalidInput("Start date must not be after end date")

        user = self.users.require_user(user_id)
        now = datetime.now(timezone.utc)
        statement = Statement(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user.id,
            account_type=account,
            start_date=start,
            end_date=end
        )
        self._save(statement)
        self.audit.log_event(AuditEventType.STATEMENT_REQUESTED, "statement", statement.id,
                             {"user_id": user.id, "account_type": account}, actor_id=user.id)
        return statement

    def get(self, statement_id: str) -> Statement:
        data = self.storage.load(STATEMENTS_TABLE, statement_id)
        if not data:
            raise StatementNotFound(statement_id)
        return Statement.from_dict(data)

    def list_statements(self, user_id: str) -> List[Statement]:
        statements = [Statement.from_dict(d) for d in self.storage.find(STATEMENTS_TABLE, {"user_id": user_id})]
        statements.sort(key=lambda s: s.created_at, reverse=True)
        return statements

    def pending(self) -> List[Statement]:
        statements = [
            Statement.from_dict(d)
            for d in self.storage.find(STATEMENTS_TABLE, {"status": StatementStatus.PENDING.value})
        ]
        statements.sort(key=lambda s: s.created_at)
        return statements

    def render_statement(self, statement: Statement) -> str:
        """CSV of the account's ledger entries in range, oldest first"""
        currency = statement.account_type.currency.code
        entries = [
            e for e in self.ledger.entries_for_user(statement.user_id, start=statement.start_date,
                                                    end=statement.end_date)
            if e.currency == currency
        ]
        entries.reverse()

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["date", "reference", "type", "description", "amount", "balance_after", "status"])
        for entry in entries:
            writer.writerow([
                entry.date.isoformat(), entry.reference, entry.type.value, entry.description,
                str(entry.amount), str(entry.balance_after), entry.status.value
            ])
        return buffer.getvalue()

    def _build_message(self, statement: Statement) -> OutboxMessage:
        user = self.users.require_user(statement.user_id)
        subject, body = render(MessageKind.STATEMENT, {
            "account_type": statement.account_type.value,
            "start_date": statement.start_date.date().isoformat(),
            "end_date": statement.end_date.date().isoformat(),
            "body": self.render_statement(statement)
        })
        now = datetime.now(timezone.utc)
        return OutboxMessage(
            id=statement.id,
            created_at=now,
            updated_at=now,
            user_id=user.id,
            recipient=user.email,
            kind=MessageKind.STATEMENT,
            subject=subject,
            body=body,
            max_attempts=1
        )

    async def process_pending(self) -> Dict[str, int]:
        """Render and send every pending statement; no retry on failure"""
        results = {"processed": 0, "sent": 0, "failed": 0}

        for statement in self.pending():
            results["processed"] += 1
            try:
                message = self._build_message(statement)
                accepted = await self.transport.send(message)
                error = None if accepted else "Mail transport rejected statement"
            except Exception as e:
                accepted = False
                error = str(e) or e.__class__.__name__

            if accepted:
                statement.status = StatementStatus.SENT
                statement.sent_at = datetime.now(timezone.utc)
                results["sent"] += 1
                event = AuditEventType.STATEMENT_SENT
            else:
                statement.status = StatementStatus.FAILED
                statement.error_message = error
                results["failed"] += 1
                event = AuditEventType.STATEMENT_FAILED
                log_action(logger, "error", f"Statement delivery failed: {error}",
                           user_id=statement.user_id, action="statement_failed", resource=statement.id)

            self._save(statement)
            self.audit.log_event(event, "statement", statement.id, {"error": error})

        return results
