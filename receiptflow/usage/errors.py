"""Usage ledger errors."""


class LedgerUnavailable(Exception):
    """The usage store could not be read or written.

    Reads fail open and writes degrade to the in-process count; callers of
    the ledger never see this error.
    """
