"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidTenantError(DomainException):
    """Operation was called without a usable tenant id"""

    pass


class UpstreamUnavailableError(DomainException):
    """Transaction or loan store cannot be reached"""

    pass


class InvalidTransactionDataError(DomainException):
    """Transaction data is malformed or invalid"""

    pass


class InvariantViolationError(DomainException):
    """Computation produced a state that cannot be valid, e.g. a loan that never amortizes"""

    def __init__(self, message: str, loan_id: str | None = None):
        super().__init__(message)
        self.loan_id = loan_id


class LoanNotFoundError(DomainException):
    """No loan with the given id exists for the tenant"""

    pass


class LoanUpdateConflictError(DomainException):
    """Loan kept changing underneath a manual update"""

    pass
