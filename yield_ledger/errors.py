"""
Ledger error taxonomy

Settlement and intake operations raise these synchronously. They subclass
ValueError so callers that already handle ValueError keep working.
"""


class LedgerError(ValueError):
    """Base class for all rejected ledger operations"""
    pass


class NotFoundError(LedgerError):
    """Unknown account or transaction id, or transaction kind mismatch"""
    pass


class InvalidStateError(LedgerError):
    """Transaction is no longer pending"""
    pass


class ValidationError(LedgerError):
    """Request values fail business rules (amount, balance, method details)"""
    pass


class PermissionDeniedError(LedgerError):
    """Actor is not allowed to act on the target account"""
    pass
