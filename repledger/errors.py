"""
Encrypted Reputation Ledger error taxonomy.

Every failure the ledger reports to its callers derives from LedgerError.
A failed operation never leaves partial writes behind.
"""


class LedgerError(Exception):
    """Base class for all ledger errors."""


class NotFound(LedgerError):
    """An activity, user or request reference does not exist."""


class CiphertextFormatError(LedgerError):
    """A ciphertext is malformed or belongs to another encryption context."""


class AlreadyMinted(LedgerError):
    """The user's badge has already been issued."""


class UnknownRequest(LedgerError):
    """A callback names a request that is not pending."""


class RequestExpired(UnknownRequest):
    """A callback arrived after the request's time-to-live elapsed."""


class InvalidProof(LedgerError):
    """A decryption proof failed authentication."""
