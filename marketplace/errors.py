"""Error taxonomy shared by the escrow ledger, the contract workflow and the API.

Every error carries a stable machine-readable ``code`` and a human-readable
``message``. Callers branch on the code and display the message; the HTTP
layer renders both (see ``marketplace.main``).
"""

import enum
from typing import Any


class ErrorKind(enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    BUSINESS_LOGIC = "business_logic"
    EXTERNAL_SERVICE = "external_service"
    SYSTEM = "system"


class MarketplaceError(Exception):
    kind: ErrorKind = ErrorKind.SYSTEM
    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(MarketplaceError):
    """Referenced job, escrow or job order does not exist."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class BusinessLogicError(MarketplaceError):
    """A state-machine precondition failed. Safe to show to the caller."""
    kind = ErrorKind.BUSINESS_LOGIC
    status_code = 400


class ExternalServiceError(MarketplaceError):
    """The payment gateway refused or failed to move funds."""
    kind = ErrorKind.EXTERNAL_SERVICE
    status_code = 502


class SystemFailure(MarketplaceError):
    """Unexpected store failure during an otherwise valid operation.

    The message is generic; the original cause is chained and logged.
    """
    kind = ErrorKind.SYSTEM
    status_code = 500
