"""
Error taxonomy for quota operations.

Quota exhaustion is not an error here: the ledger reports it as a normal
result. Only caller mistakes and unreachable stores raise.
"""


class QuotaError(Exception):
    """Base class for quota subsystem errors."""


class InputError(QuotaError, ValueError):
    """Raised when a request cannot be resolved to an identity or feature.

    Raised before any store access.
    """


class DependencyUnavailable(QuotaError):
    """Raised when the counter store or entitlement store cannot be reached.

    Callers must treat this as "not consumed" and never as a grant.
    """
    def __init__(self, message: str, store: str):
        super().__init__(message)
        self.store = store
