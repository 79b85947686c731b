"""Error taxonomy for stardex.

Every error carries a human-readable message and, where there is something
the user can do about it, a remediation hint.
"""

from __future__ import annotations

from pathlib import Path


class StardexError(Exception):
    """Base class for all stardex errors."""

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message

    def to_dict(self) -> dict:
        return {"error": self.message, "hint": self.hint}


class ValidationError(StardexError):
    """Structural schema violation. Fatal to the offending record only."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid record: " + "; ".join(self.errors))


class SourceFetchError(StardexError):
    """Network, auth or rate-limit failure while fetching from a source."""

    def __init__(
        self,
        source: str,
        message: str,
        status: int | None = None,
        hint: str | None = None,
    ):
        self.source = source
        self.status = status
        if hint is None and status in (401, 403):
            hint = "check that GITHUB_TOKEN is set and has not expired"
        super().__init__(f"{source}: {message}", hint=hint)


class StorageError(StardexError):
    """Base class for storage engine failures."""


class StorageNotFound(StorageError):
    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"No star store at {path}",
            hint="run `stardex init` or `stardex sync` first",
        )


class NoData(StorageError):
    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"Nothing to back up: {path} does not exist",
            hint="sync at least one source before taking a backup",
        )


class StorageWriteError(StorageError):
    def __init__(self, path: Path, cause: Exception | str):
        self.path = path
        super().__init__(
            f"Could not write to {path}: {cause}",
            hint="check disk space and permissions on the data directory",
        )


class LegacyStoreError(StorageError):
    def __init__(self, path: Path, cause: Exception | str):
        self.path = path
        super().__init__(
            f"Could not read legacy store {path}: {cause}",
            hint=f"move or delete {path}, or point storage.legacy_db_path elsewhere",
        )


class MigrationSkipped(StardexError):
    """Legacy migration was a no-op. Not a failure."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Migration skipped: {reason}")
