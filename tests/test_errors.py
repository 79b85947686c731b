"""Tests for the error taxonomy."""

from pathlib import Path

from stardex.errors import (
    MigrationSkipped,
    NoData,
    SourceFetchError,
    StorageError,
    StorageNotFound,
    StorageWriteError,
    ValidationError,
)


class TestErrors:
    def test_auth_failure_has_token_hint(self):
        err = SourceFetchError("github", "GET /user/starred returned 401", status=401)
        assert "GITHUB_TOKEN" in err.hint
        assert str(err).startswith("github: GET /user/starred")

    def test_storage_errors_share_base(self):
        for err in (
            StorageNotFound(Path("/a")),
            NoData(Path("/a")),
            StorageWriteError(Path("/a"), "denied"),
        ):
            assert isinstance(err, StorageError)
            assert err.hint

    def test_write_error_names_path(self):
        err = StorageWriteError(Path("/data/stars.db"), "read-only file system")
        assert "/data/stars.db" in err.message

    def test_validation_error_lists_problems(self):
        err = ValidationError(["missing required field: id", "source must be one of x"])
        assert len(err.errors) == 2
        assert err.to_dict()["hint"] is None

    def test_migration_skipped_is_not_storage_error(self):
        assert not isinstance(MigrationSkipped("no legacy store"), StorageError)
