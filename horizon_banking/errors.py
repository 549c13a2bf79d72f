"""
Error taxonomy shared by the domain services and the HTTP layer.

Every error carries the HTTP status it is surfaced with.
"""


class BankingError(Exception):
    """Base class for expected, user-facing failures"""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Unauthorized(BankingError):
    status_code = 401


class Forbidden(BankingError):
    status_code = 403


class FeatureDisabled(Forbidden):
    """Raised when a route is switched off by a feature flag"""


class NotFound(BankingError):
    status_code = 404


class UserNotFound(NotFound):
    def __init__(self, user_id: str = ""):
        super().__init__("User not found")
        self.user_id = user_id


class TransactionNotFound(NotFound):
    def __init__(self, entry_id: str = ""):
        super().__init__("Transaction not found")
        self.entry_id = entry_id


class StatementNotFound(NotFound):
    def __init__(self, statement_id: str = ""):
        super().__init__("Statement not found")
        self.statement_id = statement_id


class CheckDepositNotFound(NotFound):
    def __init__(self, deposit_id: str = ""):
        super().__init__("Deposit not found")
        self.deposit_id = deposit_id


class InvalidInput(BankingError):
    status_code = 400


class InvalidAmount(InvalidInput):
    def __init__(self, message: str = "Invalid amount"):
        super().__init__(message)


class InsufficientFunds(InvalidInput):
    def __init__(self, available, requested):
        super().__init__("Insufficient funds")
        self.available = available
        self.requested = requested


class LimitExceeded(InvalidInput):
    """A daily or per-transaction limit would be crossed"""

    def __init__(self, reason: str, message: str, limit, used=None):
        super().__init__(message)
        self.reason = reason
        self.limit = limit
        self.used = used


class Conflict(BankingError):
    status_code = 409


class AdminAlreadyRegistered(Conflict):
    """Only one admin may self-register; surfaced as 403 like the signup page expects"""
    status_code = 403

    def __init__(self):
        super().__init__("Admin already registered")


class ConcurrentModification(Conflict):
    def __init__(self, user_id: str = ""):
        super().__init__("Balance was modified concurrently, please retry")
        self.user_id = user_id


class PersistenceError(BankingError):
    status_code = 500
