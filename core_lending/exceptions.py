"""Exception hierarchy for the lending engine."""


class LendingError(Exception):
    """Base exception for all lending engine errors."""


class InvalidTermsError(LendingError, ValueError):
    """Raised when loan terms cannot produce a schedule (non-positive principal or term, negative rate)."""


class PersistenceError(LendingError):
    """Raised when reading from or writing to the loan store fails."""


class LoanNotFoundError(PersistenceError):
    """Raised when a referenced loan does not exist in the store."""
