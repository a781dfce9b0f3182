"""
Domain errors raised by the service modules.

Each error carries the HTTP status the API layer answers with, so routes can
let them propagate and a single exception handler renders them.
"""


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    status_code = 404


class ValidationError(LedgerError):
    status_code = 422


class CurrencyMismatchError(ValidationError):
    pass


class CategoryCycleError(LedgerError):
    status_code = 409


class CurrencyInUseError(LedgerError):
    status_code = 409


class InactiveUserError(LedgerError):
    status_code = 403


class AccountInUseError(LedgerError):
    status_code = 409
