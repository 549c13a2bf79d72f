"""
Transaction Ledger Module

Append-only collection of balance-affecting events, keyed by user id.
Amount and type of an entry never change after it is written; admins may
only override the display date, and the pre-edit date is kept forever.
"""

import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .errors import TransactionNotFound
from .storage import StorageInterface, StorageRecord


LEDGER_TABLE = "ledger"


class TransactionType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    DEBIT = "debit"
    CREDIT = "credit"
    FEE = "fee"

    @property
    def is_inflow(self) -> bool:
        return self in _INFLOWS

    @property
    def reference_prefix(self) -> str:
        return _PREFIXES[self]


_INFLOWS = {TransactionType.DEPOSIT, TransactionType.CREDIT, TransactionType.TRANSFER_IN}

_PREFIXES = {
    TransactionType.DEPOSIT: "DEP",
    TransactionType.WITHDRAWAL: "WTH",
    TransactionType.TRANSFER_IN: "TRF",
    TransactionType.TRANSFER_OUT: "TRF",
    TransactionType.DEBIT: "DBT",
    TransactionType.CREDIT: "CRD",
    TransactionType.FEE: "FEE",
}


class EntryStatus(Enum):
    POSTED = "posted"
    PENDING = "pending"
    REJECTED = "rejected"


def generate_reference(transaction_type: TransactionType) -> str:
    """e.g. WTH-1718000000000-K3QZ"""
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"{transaction_type.reference_prefix}-{millis}-{suffix}"


def _parse_dt(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


@dataclass
class LedgerEntry(StorageRecord):
    """One balance-affecting event"""
    user_id: str
    type: TransactionType
    currency: str
    amount: Decimal  # always positive; direction comes from type
    description: str
    date: datetime
    balance_after: Decimal
    reference: str
    status: EntryStatus = EntryStatus.POSTED
    related_user_id: Optional[str] = None
    edited_date_by_admin: bool = False
    original_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['type'] = self.type.value
        result['status'] = self.status.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        data['type'] = TransactionType(data['type'])
        data['status'] = EntryStatus(data.get('status', EntryStatus.POSTED.value))
        data['amount'] = Decimal(str(data['amount']))
        data['balance_after'] = Decimal(str(data['balance_after']))
        data['date'] = _parse_dt(data['date'])
        data['original_date'] = _parse_dt(data.get('original_date'))
        return super().from_dict(data)

    def to_public_dict(self) -> Dict[str, Any]:
        result = self.to_dict()
        result['amount'] = str(self.amount)
        result['balance_after'] = str(self.balance_after)
        return result


class Ledger:
    """Append-only transaction ledger"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 table_name: str = LEDGER_TABLE):
        self.storage = storage
        self.audit = audit_trail
        self.table_name = table_name

    def new_entry(self, user_id: str, transaction_type: TransactionType, currency: str,
                  amount: Decimal, description: str, balance_after: Decimal,
                  status: EntryStatus = EntryStatus.POSTED,
                  related_user_id: Optional[str] = None) -> LedgerEntry:
        now = datetime.now(timezone.utc)
        return LedgerEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            type=transaction_type,
            currency=currency,
            amount=amount,
            description=description,
            date=now,
            balance_after=balance_after,
            reference=generate_reference(transaction_type),
            status=status,
            related_user_id=related_user_id
        )

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        if self.storage.exists(self.table_name, entry.id):
            raise ValueError(f"Ledger entry {entry.id} already exists")
        self.storage.save(self.table_name, entry.id, entry.to_dict())
        return entry

    def get(self, entry_id: str) -> LedgerEntry:
        data = self.storage.load(self.table_name, entry_id)
        if not data:
            raise TransactionNotFound(entry_id)
        return LedgerEntry.from_dict(data)

    def _save(self, entry: LedgerEntry) -> None:
        entry.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, entry.id, entry.to_dict())

    def entries_for_user(self, user_id: str, limit: Optional[int] = None,
                         start: Optional[datetime] = None,
                         end: Optional[datetime] = None) -> List[LedgerEntry]:
        """Entries for a user, newest first, optionally within [start, end]"""
        entries = [LedgerEntry.from_dict(d) for d in self.storage.find(self.table_name, {"user_id": user_id})]
        if start:
            entries = [e for e in entries if e.date >= start]
        if end:
            entries = [e for e in entries if e.date <= end]
        entries.sort(key=lambda e: e.date, reverse=True)
        return entries[:limit] if limit else entries

    def latest_for_user(self, user_id: str) -> Optional[LedgerEntry]:
        entries = self.entries_for_user(user_id, limit=1)
        return entries[0] if entries else None

    def pending_entries(self) -> List[LedgerEntry]:
        entries = [
            LedgerEntry.from_dict(d)
            for d in self.storage.find(self.table_name, {"status": EntryStatus.PENDING.value})
        ]
        entries.sort(key=lambda e: e.date)
        return entries

    def settle(self, entry: LedgerEntry, status: EntryStatus,
               balance_after: Optional[Decimal] = None) -> LedgerEntry:
        """Move a pending entry to its final status"""
        entry.status = status
        if balance_after is not None:
            entry.balance_after = balance_after
        self._save(entry)
        return entry

    def edit_date(self, entry_id: str, new_date: datetime,
                  actor_id: Optional[str] = None) -> LedgerEntry:
        """
        Override the display date of an entry.

        The first edit copies the pre-edit date into ``original_date``; later
        edits leave it alone.
        """
        if new_date.tzinfo is None:
            new_date = new_date.replace(tzinfo=timezone.utc)

        with self.storage.atomic():
            entry = self.get(entry_id)
            previous = entry.date
            if not entry.edited_date_by_admin:
                entry.original_date = entry.date
                entry.edited_date_by_admin = True
            entry.date = new_date
            self._save(entry)

            self.audit.log_event(
                AuditEventType.TRANSACTION_DATE_EDITED, "transaction", entry.id,
                {"from": previous, "to": new_date, "original_date": entry.original_date},
                actor_id=actor_id
            )
        return entry
