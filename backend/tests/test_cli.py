"""
Flask CLI commands.

Verifies:
- system init bootstraps the admin and parameters and is safe to re-run
- users create / reset-password repair paths
- maintenance commands report their counts
"""

from datetime import date

from mimecanico.extensions import db
from mimecanico.models import SystemParameter, User
from mimecanico.services import auth_service

from conftest import PASSWORD


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init"])
    assert result.exit_code == 0, result.output
    assert "Created user: admin" in result.output
    assert User.query.filter_by(username="admin", role="admin").count() == 1
    assert SystemParameter.query.count() > 0

    again = runner.invoke(args=["system", "init"])
    assert again.exit_code == 0
    assert "already exists" in again.output
    assert "Seeded 0 default parameter(s)" in again.output


def test_users_create_and_list(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "users", "create",
        "--username", "pedro",
        "--email", "pedro@taller.test",
        "--password", PASSWORD,
        "--role", "mechanic",
    ])
    assert result.exit_code == 0, result.output
    assert "role 'mechanic'" in result.output

    listed = runner.invoke(args=["users", "list", "--role", "mechanic"])
    assert "pedro" in listed.output

    weak = runner.invoke(args=[
        "users", "create",
        "--username", "weak",
        "--email", "weak@taller.test",
        "--password", "weak",
        "--role", "mechanic",
    ])
    assert weak.exit_code == 1
    assert "FAIL" in weak.output


def test_reset_password_reactivates(app, admin_user):
    admin_user.is_active = False
    db.session.commit()

    runner = app.test_cli_runner()
    result = runner.invoke(args=["users", "reset-password", "--username", "admin", "--password", "Changed123!"])
    assert result.exit_code == 0, result.output
    assert "Reactivated" in result.output
    assert auth_service.authenticate("admin", "Changed123!") is not None


def test_reset_password_recreates_missing_admin(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["users", "reset-password", "--password", "Recover123!"])
    assert result.exit_code == 0, result.output
    assert auth_service.authenticate("admin", "Recover123!") is not None

    missing = runner.invoke(args=["users", "reset-password", "--username", "ghost", "--password", "Recover123!"])
    assert missing.exit_code == 1


def test_maintenance_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["invoices", "mark-overdue", "--as-of", date(2025, 1, 31).isoformat()])
    assert result.exit_code == 0
    assert "Marked 0 invoice(s) overdue" in result.output

    bad = runner.invoke(args=["invoices", "mark-overdue", "--as-of", "31/01/2025"])
    assert bad.exit_code == 1

    purged = runner.invoke(args=["tokens", "purge"])
    assert "Purged 0 expired revocation record(s)" in purged.output
