from typing import Optional


class MigrationError(Exception):
    """Base class for every error that should stop a run."""


class PreconditionError(MigrationError):
    """The working directory is not in a state we are allowed to touch."""


class SourceDecodeError(MigrationError):
    """A record in the legacy store could not be decoded."""

    def __init__(self, table: str, key: bytes, reason: str):
        self.table = table
        self.key = key
        super().__init__(f"Failed to decode record {key.hex()} in table '{table}': {reason}")


class StoreReadError(MigrationError):
    """A store file could not be read, or a required record is absent."""


class InvariantViolation(MigrationError):
    pass


class VerificationError(MigrationError, AssertionError):
    """Source and target disagree for an entity family."""

    def __init__(self, family: str, message: str, key: Optional[str] = None):
        self.family = family
        self.key = key
        detail = f"[{family}] {message}"
        if key is not None:
            detail += f" (key: {key})"
        super().__init__(detail)
