"""
Tests for recurring transfer registration and the due-rule runner
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from horizon_banking.storage import InMemoryStorage
from horizon_banking.audit import AuditTrail, AuditEventType
from horizon_banking.outbox import Outbox, MessageKind
from horizon_banking.ledger import Ledger, TransactionType
from horizon_banking.users import UserManager
from horizon_banking.transactions import TransactionRecorder
from horizon_banking.errors import ConcurrentModification, InvalidAmount, InvalidInput, UserNotFound
from horizon_banking.recurring import RecurringTransferService, is_due


def _rule(interval, last_run=None, active=True):
    return {
        "interval": interval,
        "last_run": last_run.isoformat() if last_run else None,
        "active": active
    }


class TestIsDue:

    def test_never_run_is_due(self):
        assert is_due(_rule("monthly"), date(2024, 5, 1))

    def test_inactive_never_due(self):
        assert not is_due(_rule("daily", active=False), date(2024, 5, 1))

    def test_daily(self):
        ran = datetime(2024, 5, 1, 23, 0, tzinfo=timezone.utc)
        assert not is_due(_rule("daily", ran), date(2024, 5, 1))
        assert is_due(_rule("daily", ran), date(2024, 5, 2))

    def test_weekly(self):
        ran = datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert not is_due(_rule("weekly", ran), date(2024, 5, 7))
        assert is_due(_rule("weekly", ran), date(2024, 5, 8))

    def test_monthly(self):
        ran = datetime(2024, 5, 31, tzinfo=timezone.utc)
        assert not is_due(_rule("monthly", ran), date(2024, 5, 31))
        assert is_due(_rule("monthly", ran), date(2024, 6, 1))
        assert is_due(_rule("monthly", datetime(2023, 12, 15, tzinfo=timezone.utc)), date(2024, 1, 2))


class TestRecurringTransferService:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.outbox = Outbox(self.storage)
        self.user_manager = UserManager(self.storage, self.audit_trail, self.outbox)
        self.ledger = Ledger(self.storage, self.audit_trail)
        self.recorder = TransactionRecorder(
            self.storage, self.user_manager, self.ledger, self.outbox, self.audit_trail
        )
        self.service = RecurringTransferService(
            self.storage, self.user_manager, self.recorder, self.outbox, self.audit_trail
        )
        self.user = self.user_manager.create_user("Jane", "jane@example.com", "secret123")

    def test_create_recurring(self):
        rule = self.service.create_recurring(self.user.id, "debit", "25.00", "monthly", "Gym")

        assert rule["type"] == "debit"
        assert rule["amount"] == "25.00"
        assert rule["interval"] == "monthly"
        assert rule["last_run"] is None
        assert rule["active"] is True

        stored = self.service.list_recurring(self.user.id)
        assert [r["id"] for r in stored] == [rule["id"]]

        kinds = [m.kind for m in self.outbox.messages_for_user(self.user.id)]
        assert MessageKind.RECURRING_SETUP in kinds
        assert self.audit_trail.get_events_by_type(AuditEventType.RECURRING_CREATED)

    def test_default_description(self):
        rule = self.service.create_recurring(self.user.id, "credit", 10, "weekly")
        assert rule["description"] == "credit scheduled transaction"

    @pytest.mark.parametrize("rule_type,interval", [
        ("transfer", "monthly"),
        ("debit", "yearly"),
        (None, "monthly"),
    ])
    def test_invalid_rule(self, rule_type, interval):
        with pytest.raises(InvalidInput):
            self.service.create_recurring(self.user.id, rule_type, 10, interval)
        assert self.service.list_recurring(self.user.id) == []

    def test_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            self.service.create_recurring(self.user.id, "debit", 0, "monthly")

    def test_unknown_user(self):
        with pytest.raises(UserNotFound):
            self.service.create_recurring("missing", "debit", 10, "monthly")

    def test_run_due_executes_and_stamps(self):
        self.recorder.deposit(self.user.id, 100)
        self.service.create_recurring(self.user.id, "debit", 30, "monthly", "Rent")
        self.service.create_recurring(self.user.id, "credit", 5, "daily", "Cashback")

        results = self.service.run_due(date(2024, 5, 1))

        assert results == {"checked": 2, "executed": 2, "failed": 0}
        assert self.user_manager.get_user(self.user.id).balance == Decimal("75.00")
        types = [e.type for e in self.ledger.entries_for_user(self.user.id)]
        assert TransactionType.DEBIT in types
        assert TransactionType.CREDIT in types
        assert all(r["last_run"] for r in self.service.list_recurring(self.user.id))

    def test_run_due_skips_rules_already_run(self):
        self.recorder.deposit(self.user.id, 100)
        self.service.create_recurring(self.user.id, "debit", 30, "monthly")

        self.service.run_due()
        results = self.service.run_due()

        assert results["executed"] == 0
        assert self.user_manager.get_user(self.user.id).balance == Decimal("70.00")

    def test_run_due_logs_and_skips_failures(self):
        self.service.create_recurring(self.user.id, "debit", 30, "monthly")

        results = self.service.run_due()

        assert results == {"checked": 1, "executed": 0, "failed": 1}
        assert self.service.list_recurring(self.user.id)[0]["last_run"] is None
        assert self.user_manager.get_user(self.user.id).balance == Decimal("0")

    def test_failed_run_leaves_rule_due_and_balance_untouched(self, monkeypatch):
        """A run that fails after the debit is applied must not charge twice"""
        self.recorder.deposit(self.user.id, 100)
        self.service.create_recurring(self.user.id, "debit", 10, "monthly", "Gym")
        original_enqueue = self.outbox.enqueue
        calls = {"count": 0}

        def enqueue_fails_once(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConcurrentModification(self.user.id)
            return original_enqueue(*args, **kwargs)

        monkeypatch.setattr(self.outbox, "enqueue", enqueue_fails_once)
        first = self.service.run_due()

        assert first == {"checked": 1, "executed": 0, "failed": 1}
        assert self.user_manager.get_user(self.user.id).balance == Decimal("100.00")
        assert self.service.list_recurring(self.user.id)[0]["last_run"] is None

        second = self.service.run_due()
        third = self.service.run_due()

        assert second["executed"] == 1
        assert third["executed"] == 0
        assert self.user_manager.get_user(self.user.id).balance == Decimal("90.00")
        debits = [e for e in self.ledger.entries_for_user(self.user.id)
                  if e.type == TransactionType.DEBIT]
        assert len(debits) == 1

    def test_debit_and_stamp_saved_together(self):
        self.recorder.deposit(self.user.id, 100)
        self.service.create_recurring(self.user.id, "debit", 10, "monthly")
        version_before = self.user_manager.get_user(self.user.id).version

        self.service.run_due()

        user = self.user_manager.get_user(self.user.id)
        assert user.version == version_before + 1
        assert user.balance == Decimal("90.00")
        assert user.recurring[0]["last_run"]

    def test_rule_run_elsewhere_is_not_repeated(self):
        self.recorder.deposit(self.user.id, 100)
        rule = self.service.create_recurring(self.user.id, "debit", 10, "monthly")
        stale_users = self.user_manager.list_users()

        self.service.run_due()
        # A second runner still holding the pre-run snapshot
        self.user_manager.list_users = lambda: stale_users
        results = self.service.run_due()

        assert results["executed"] == 0
        assert self.user_manager.get_user(self.user.id).balance == Decimal("90.00")
        assert [r["id"] for r in self.service.list_recurring(self.user.id)] == [rule["id"]]
