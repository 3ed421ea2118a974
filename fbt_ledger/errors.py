class LedgerServiceError(Exception):
    pass


class ValidationError(LedgerServiceError):
    pass


class InvalidAmountError(ValidationError):
    pass


class SelfTransferError(ValidationError):
    pass


class AccountDisabledError(LedgerServiceError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class AccountNotFoundError(NotFoundError):
    pass


class RequestNotFoundError(NotFoundError):
    pass


class RoundNotFoundError(NotFoundError):
    pass


class BetNotFoundError(NotFoundError):
    pass


class InvestmentNotFoundError(NotFoundError):
    pass


class InsufficientFundsError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class ConflictError(LedgerServiceError):
    """Raised when a batch was built against a stale document version.

    Nothing from the batch is applied; the caller may retry the whole step.
    """
