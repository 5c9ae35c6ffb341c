"""
Tests for the startup migration runner.
"""

from unittest.mock import MagicMock, patch

from governance.db import migration_runner
from governance.db.migration_runner import MigrationStatus, to_sync_url


def test_to_sync_url():
    assert (
        to_sync_url("postgresql+asyncpg://u:p@h:5432/db") == "postgresql+psycopg2://u:p@h:5432/db"
    )


def test_to_sync_url_leaves_sync_urls():
    assert to_sync_url("postgresql://u:p@h/db") == "postgresql://u:p@h/db"


def test_status_pending():
    assert MigrationStatus(current_revision=None, head_revision="0001").pending is True
    assert MigrationStatus(current_revision="0001", head_revision="0001").pending is False


def test_up_to_date_skips_upgrade():
    with (
        patch.object(migration_runner, "create_engine", return_value=MagicMock()),
        patch.object(migration_runner, "_get_current_revision", return_value="0001"),
        patch.object(migration_runner, "_get_head_revision", return_value="0001"),
        patch.object(migration_runner.command, "upgrade") as upgrade,
    ):
        migration_runner.run_migrations()

    upgrade.assert_not_called()


def test_pending_revision_upgrades_to_head():
    with (
        patch.object(migration_runner, "create_engine", return_value=MagicMock()),
        patch.object(migration_runner, "_get_current_revision", return_value=None),
        patch.object(migration_runner, "_get_head_revision", return_value="0001"),
        patch.object(migration_runner.command, "upgrade") as upgrade,
    ):
        migration_runner.run_migrations()

    upgrade.assert_called_once()
    assert upgrade.call_args.args[1] == "head"
