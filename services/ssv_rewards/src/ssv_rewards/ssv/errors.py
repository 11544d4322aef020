from __future__ import annotations


class SsvError(RuntimeError):
    """Base class for callback processing failures."""


class KeyFetchError(SsvError):
    """The verifier key directory could not be fetched or parsed."""


class SignatureInvalid(SsvError):
    """The callback signature did not verify, or its key is unknown."""


class PayloadMalformed(SsvError):
    """The callback verified but a required field is missing or unparseable."""


class DuplicateTransaction(SsvError):
    """The transaction id is already in the ledger; treated as success."""


class PlayerUnresolved(SsvError):
    """The callback names no player that can be credited."""


class PersistenceFailure(SsvError):
    """The ledger unit of work could not be committed."""
