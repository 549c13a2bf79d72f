"""
Test suite for the transaction recorder

Balance deltas, ledger entries, outbox notifications, transfers,
optimistic retry and the pending-withdrawal flow.
"""

import sqlite3
import pytest
from decimal import Decimal

from horizon_banking.storage import InMemoryStorage, SQLiteStorage
from horizon_banking.audit import AuditTrail, AuditEventType
from horizon_banking.outbox import Outbox, MessageKind
from horizon_banking.ledger import Ledger, TransactionType, EntryStatus
from horizon_banking.users import UserManager
from horizon_banking.errors import (
    ConcurrentModification, FeatureDisabled, InsufficientFunds, InvalidAmount,
    InvalidInput, PersistenceError, UserNotFound
)
from horizon_banking.transactions import TransactionRecorder


class RecorderTestCase:
    """Shared wiring for recorder tests"""

    enable_pending = False
    allow_negative_balance = False

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.outbox = Outbox(self.storage)
        self.user_manager = UserManager(self.storage, self.audit_trail, self.outbox)
        self.ledger = Ledger(self.storage, self.audit_trail)
        self.recorder = TransactionRecorder(
            self.storage, self.user_manager, self.ledger, self.outbox, self.audit_trail,
            allow_negative_balance=self.allow_negative_balance,
            enable_pending=self.enable_pending
        )
        self.user = self.user_manager.create_user("Jane Doe", "jane@example.com", "secret123")

    def fund(self, user_id, amount):
        return self.recorder.deposit(user_id, amount)

    def balance(self, user_id):
        return self.user_manager.get_user(user_id).balance


class TestRecordTransaction(RecorderTestCase):

    def test_deposit_scenario(self):
        """balance 100.00 + deposit 50.00 -> 150.00 with matching entry"""
        self.fund(self.user.id, "100.00")

        user, entry = self.recorder.deposit(self.user.id, 50)

        assert user.balance == Decimal("150.00")
        assert self.balance(self.user.id) == Decimal("150.00")
        assert entry.type == TransactionType.DEPOSIT
        assert entry.amount == Decimal("50.00")
        assert entry.balance_after == Decimal("150.00")
        assert entry.reference.startswith("DEP-")
        assert self.ledger.latest_for_user(self.user.id).id == entry.id

    def test_withdrawal(self):
        self.fund(self.user.id, 100)
        user, entry = self.recorder.withdraw(self.user.id, "40.25", "ATM")

        assert user.balance == Decimal("59.75")
        assert entry.type == TransactionType.WITHDRAWAL
        assert entry.status == EntryStatus.POSTED
        assert entry.balance_after == Decimal("59.75")

    def test_debit_credit_fee(self):
        self.recorder.record_transaction(self.user.id, "credit", 20)
        self.recorder.record_transaction(self.user.id, TransactionType.DEBIT, 5)
        self.recorder.record_transaction(self.user.id, "fee", "1.50")
        assert self.balance(self.user.id) == Decimal("13.50")

    def test_crypto_uses_crypto_balance(self):
        user, entry = self.recorder.deposit(self.user.id, "0.00012345", currency="BTC")

        assert user.crypto_balance == Decimal("0.00012345")
        assert user.balance == Decimal("0")
        assert entry.currency == "BTC"
        assert entry.balance_after == Decimal("0.00012345")

    @pytest.mark.parametrize("amount", [0, -5, "-0.01", "abc", None, "", float("nan"), True, "0.001"])
    def test_invalid_amount_rejected_before_mutation(self, amount):
        self.fund(self.user.id, 100)
        entries_before = len(self.ledger.entries_for_user(self.user.id))

        with pytest.raises(InvalidAmount):
            self.recorder.withdraw(self.user.id, amount)

        assert self.balance(self.user.id) == Decimal("100.00")
        assert len(self.ledger.entries_for_user(self.user.id)) == entries_before

    def test_insufficient_funds(self):
        self.fund(self.user.id, 10)
        with pytest.raises(InsufficientFunds) as exc_info:
            self.recorder.withdraw(self.user.id, "10.01")

        assert exc_info.value.available == Decimal("10.00")
        assert self.balance(self.user.id) == Decimal("10.00")
        assert len(self.ledger.entries_for_user(self.user.id)) == 1

    def test_unknown_user(self):
        with pytest.raises(UserNotFound):
            self.recorder.deposit("missing", 10)

    def test_unknown_type(self):
        with pytest.raises(InvalidInput):
            self.recorder.record_transaction(self.user.id, "chargeback", 10)

    def test_notification_enqueued_with_mutation(self):
        self.fund(self.user.id, 25)
        alerts = [m for m in self.outbox.messages_for_user(self.user.id)
                  if m.kind == MessageKind.TRANSACTION_ALERT]
        assert len(alerts) == 1
        assert "$25.00" in alerts[0].body
        assert alerts[0].recipient == "jane@example.com"

    def test_failed_mutation_enqueues_nothing(self):
        before = len(self.outbox.messages_for_user(self.user.id))
        with pytest.raises(InsufficientFunds):
            self.recorder.withdraw(self.user.id, 1)
        assert len(self.outbox.messages_for_user(self.user.id)) == before

    def test_transaction_is_audited(self):
        _, entry = self.fund(self.user.id, 10)
        events = self.audit_trail.get_events_for_entity("transaction", entry.id)
        assert events[0].event_type == AuditEventType.TRANSACTION_RECORDED
        assert events[0].metadata["balance_after"] == "10.00"


class TestNegativeBalanceAllowed(RecorderTestCase):

    allow_negative_balance = True

    def test_overdraft_permitted(self):
        user, entry = self.recorder.withdraw(self.user.id, 30)
        assert user.balance == Decimal("-30.00")
        assert entry.balance_after == Decimal("-30.00")


class TestOptimisticRetry(RecorderTestCase):
    """A write from another connection between read and save forces a retry"""

    def test_retry_after_conflict_produces_correct_balance(self, tmp_path):
        db_path = tmp_path / "race.db"
        self.storage = SQLiteStorage(db_path)
        self.audit_trail = AuditTrail(self.storage)
        self.outbox = Outbox(self.storage)
        self.user_manager = UserManager(self.storage, self.audit_trail, self.outbox)
        self.ledger = Ledger(self.storage, self.audit_trail)
        self.recorder = TransactionRecorder(
            self.storage, self.user_manager, self.ledger, self.outbox, self.audit_trail
        )
        self.user = self.user_manager.create_user("Jane Doe", "jane@example.com", "secret123")
        self.fund(self.user.id, 100)

        other_storage = SQLiteStorage(db_path)
        other_users = UserManager(other_storage, AuditTrail(other_storage))
        original_save = self.user_manager.save_user_versioned
        state = {"interfered": False}

        def racing_save(user):
            if not state["interfered"]:
                state["interfered"] = True
                # Another process deposits 10 after our read
                other = other_users.get_user(user.id)
                other.balance += Decimal("10")
                assert other_users.save_user_versioned(other)
            return original_save(user)

        self.user_manager.save_user_versioned = racing_save
        try:
            user, entry = self.recorder.withdraw(self.user.id, 30)
        finally:
            other_storage.close()

        assert user.balance == Decimal("80.00")
        assert entry.balance_after == Decimal("80.00")
        assert self.balance(self.user.id) == Decimal("80.00")
        self.storage.close()

    def test_conflicting_attempt_leaves_no_entry(self):
        self.fund(self.user.id, 100)
        original_save = self.user_manager.save_user_versioned
        calls = []

        def flaky_save(user):
            calls.append(user.id)
            if len(calls) == 1:
                return False
            return original_save(user)

        self.user_manager.save_user_versioned = flaky_save
        self.recorder.withdraw(self.user.id, 30)

        withdrawals = [e for e in self.ledger.entries_for_user(self.user.id)
                       if e.type == TransactionType.WITHDRAWAL]
        assert len(calls) == 2
        assert len(withdrawals) == 1

    def test_retries_exhausted(self):
        self.fund(self.user.id, 100)
        self.user_manager.save_user_versioned = lambda user: False

        with pytest.raises(ConcurrentModification):
            self.recorder.withdraw(self.user.id, 30)

        assert self.balance(self.user.id) == Decimal("100.00")

    def test_storage_failure_maps_to_persistence_error(self, monkeypatch):
        def broken_append(entry):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(self.ledger, "append", broken_append)
        with pytest.raises(PersistenceError):
            self.recorder.deposit(self.user.id, 10)

        assert self.balance(self.user.id) == Decimal("0")


class TestTransfer(RecorderTestCase):

    def setup_method(self):
        super().setup_method()
        self.other = self.user_manager.create_user("John Roe", "john@example.com", "secret123")
        self.fund(self.user.id, 100)

    def test_transfer_moves_funds_and_preserves_total(self):
        total_before = self.balance(self.user.id) + self.balance(self.other.id)

        result = self.recorder.transfer(self.user.id, self.other.id, "35.50", "rent")

        assert result.sender.balance == Decimal("64.50")
        assert result.recipient.balance == Decimal("35.50")
        assert self.balance(self.user.id) + self.balance(self.other.id) == total_before

        assert result.debit_entry.type == TransactionType.TRANSFER_OUT
        assert result.debit_entry.related_user_id == self.other.id
        assert result.credit_entry.type == TransactionType.TRANSFER_IN
        assert result.credit_entry.related_user_id == self.user.id
        assert result.credit_entry.balance_after == Decimal("35.50")

    def test_transfer_insufficient_funds_changes_nothing(self):
        with pytest.raises(InsufficientFunds):
            self.recorder.transfer(self.user.id, self.other.id, 500)

        assert self.balance(self.user.id) == Decimal("100.00")
        assert self.balance(self.other.id) == Decimal("0")
        assert self.ledger.entries_for_user(self.other.id) == []

    def test_self_transfer_rejected(self):
        with pytest.raises(InvalidInput):
            self.recorder.transfer(self.user.id, self.user.id, 10)

    def test_transfer_to_unknown_user(self):
        with pytest.raises(UserNotFound):
            self.recorder.transfer(self.user.id, "missing", 10)
        assert self.balance(self.user.id) == Decimal("100.00")

    def test_recipient_conflict_rolls_back_sender(self):
        original_save = self.user_manager.save_user_versioned
        calls = []

        def recipient_conflicts_once(user):
            calls.append(user.id)
            if user.id == self.other.id and calls.count(self.other.id) == 1:
                return False
            return original_save(user)

        self.user_manager.save_user_versioned = recipient_conflicts_once
        self.recorder.transfer(self.user.id, self.other.id, 10)

        assert self.balance(self.user.id) == Decimal("90.00")
        assert self.balance(self.other.id) == Decimal("10.00")
        assert len([e for e in self.ledger.entries_for_user(self.user.id)
                    if e.type == TransactionType.TRANSFER_OUT]) == 1


class TestPendingDisabled(RecorderTestCase):

    def test_approve_requires_flag(self):
        with pytest.raises(FeatureDisabled):
            self.recorder.approve_pending("anything")
        with pytest.raises(FeatureDisabled):
            self.recorder.reject_pending("anything")
        with pytest.raises(FeatureDisabled):
            self.recorder.request_withdrawal(self.user.id, 10)


class TestPendingWithdrawals(RecorderTestCase):

    enable_pending = True

    def setup_method(self):
        super().setup_method()
        self.fund(self.user.id, 100)

    def test_withdraw_creates_pending_entry(self):
        user, entry = self.recorder.withdraw(self.user.id, 40)

        assert entry.status == EntryStatus.PENDING
        assert entry.balance_after == Decimal("100.00")
        assert self.balance(self.user.id) == Decimal("100.00")
        kinds = [m.kind for m in self.outbox.messages_for_user(self.user.id)]
        assert MessageKind.TRANSACTION_PENDING in kinds

    def test_pending_request_checks_funds(self):
        with pytest.raises(InsufficientFunds):
            self.recorder.withdraw(self.user.id, 1000)
        assert self.ledger.pending_entries() == []

    def test_approve(self):
        _, entry = self.recorder.withdraw(self.user.id, 40)
        user, approved = self.recorder.approve_pending(entry.id, actor_id="admin")

        assert approved.status == EntryStatus.POSTED
        assert approved.balance_after == Decimal("60.00")
        assert user.balance == Decimal("60.00")
        assert self.ledger.get(entry.id).status == EntryStatus.POSTED

        events = self.audit_trail.get_events_by_type(AuditEventType.TRANSACTION_APPROVED)
        assert events[0].actor_id == "admin"

    def test_reject(self):
        _, entry = self.recorder.withdraw(self.user.id, 40)
        rejected = self.recorder.reject_pending(entry.id, actor_id="admin")

        assert rejected.status == EntryStatus.REJECTED
        assert self.balance(self.user.id) == Decimal("100.00")

    def test_settled_entry_cannot_be_settled_again(self):
        _, entry = self.recorder.withdraw(self.user.id, 40)
        self.recorder.reject_pending(entry.id)

        with pytest.raises(InvalidInput):
            self.recorder.approve_pending(entry.id)
        with pytest.raises(InvalidInput):
            self.recorder.reject_pending(entry.id)

    def test_approval_rechecks_funds(self):
        _, entry = self.recorder.withdraw(self.user.id, 80)
        self.recorder.record_transaction(self.user.id, "debit", 50)

        with pytest.raises(InsufficientFunds):
            self.recorder.approve_pending(entry.id)
        assert self.ledger.get(entry.id).status == EntryStatus.PENDING
