"""
Component wiring and request dependencies
"""

from typing import Optional

from fastapi import Depends

from ..audit import AuditTrail
from ..auth import Identity, get_current_identity
from ..check_deposits import CheckDepositService
from ..config import HorizonConfig, get_config
from ..errors import Unauthorized, UserNotFound
from ..ledger import Ledger
from ..limits import TransactionLimitManager
from ..outbox import HTTPMailTransport, LogMailTransport, MailTransport, Outbox, OutboxDispatcher
from ..recurring import RecurringTransferService
from ..reporting import ReportingEngine
from ..statements import StatementService
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface
from ..transactions import TransactionRecorder
from ..users import User, UserManager


class BankingSystem:
    """Horizon banking components wired to one storage backend"""

    def __init__(self, config: Optional[HorizonConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 transport: Optional[MailTransport] = None):
        self.config = config or get_config()

        # Initialize storage
        if storage is not None:
            self.storage = storage
        elif self.config.use_sqlite:
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        self.transport = transport or self._create_transport()

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage)
        self.outbox = Outbox(self.storage, max_attempts=self.config.outbox_max_attempts)
        self.user_manager = UserManager(
            self.storage, self.audit_trail, self.outbox,
            password_min_length=self.config.password_min_length,
            max_retries=self.config.max_balance_retries
        )
        self.ledger = Ledger(self.storage, self.audit_trail)
        self.limits = self._create_limits()
        self.recorder = TransactionRecorder(
            self.storage, self.user_manager, self.ledger, self.outbox, self.audit_trail,
            allow_negative_balance=self.config.allow_negative_balance,
            max_retries=self.config.max_balance_retries,
            enable_pending=self.config.enable_pending_tx,
            limits=self.limits
        )
        self.recurring = RecurringTransferService(
            self.storage, self.user_manager, self.recorder, self.outbox, self.audit_trail
        )
        self.reporting_engine = ReportingEngine(self.user_manager, self.ledger)
        self.statements = StatementService(
            self.storage, self.user_manager, self.ledger, self.transport, self.audit_trail
        )
        self.check_deposits = CheckDepositService(
            self.storage, self.user_manager, self.recorder, self.outbox, self.audit_trail
        )
        self.dispatcher = OutboxDispatcher(self.outbox, self.transport)

    def _create_limits(self) -> Optional[TransactionLimitManager]:
        """Daily limits, unless switched off"""
        if not self.config.enable_transaction_limits:
            return None
        return TransactionLimitManager(
            self.storage, self.audit_trail,
            daily_transfer_limit=self.config.daily_transfer_limit,
            daily_withdrawal_limit=self.config.daily_withdrawal_limit,
            max_transaction_amount=self.config.max_transaction_amount,
            max_retries=self.config.max_balance_retries
        )

    def _create_transport(self) -> MailTransport:
        """HTTP mail API when configured, log-only otherwise"""
        if not self.config.mail_api_url:
            return LogMailTransport(sender=self.config.mail_sender)
        return HTTPMailTransport(
            url=self.config.mail_api_url,
            sender=self.config.mail_sender,
            api_key=self.config.mail_api_key,
            timeout=self.config.mail_timeout
        )

    def close(self) -> None:
        self.storage.close()


_banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    """Process-wide system, created on first use"""
    global _banking_system
    if _banking_system is None:
        _banking_system = BankingSystem()
    return _banking_system


def set_banking_system(system: Optional[BankingSystem]) -> None:
    global _banking_system
    _banking_system = system


def require_user(identity: Identity = Depends(get_current_identity),
                 system: BankingSystem = Depends(get_banking_system)) -> User:
    """The caller's user document; a token for a deleted user is rejected"""
    try:
        return system.user_manager.require_user(identity.user_id)
    except UserNotFound:
        raise Unauthorized("User no longer exists")
