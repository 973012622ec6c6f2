"""Exceptions raised by the ledger and its collaborators"""


class LedgerError(Exception):
    """Base class for every error surfaced by the ledger"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Input violates a data-model invariant"""


class NotFoundError(LedgerError):
    """Referenced group, expense or user does not exist"""


class ReferentialIntegrityError(ValidationError):
    """
    A reference crosses entities incorrectly

    Raised when a payer or split participant is not a member of the target
    group, or when a groupId points to a group that does not exist.
    """
