from __future__ import annotations

import pytest
from typer.testing import CliRunner

from safedocs.cli import app
from safedocs.db.session import SessionLocal
from safedocs.models import Org, User, UserRole
from safedocs.services.auth import verify_password

runner = CliRunner()


@pytest.mark.integration
def test_create_org_and_user():
    result = runner.invoke(app, ["create-org", "Butaro District Hospital"])
    assert result.exit_code == 0, result.output
    assert "Created organization Butaro District Hospital" in result.output

    again = runner.invoke(app, ["create-org", "Butaro District Hospital"])
    assert "already exists" in again.output

    result = runner.invoke(
        app,
        [
            "create-user",
            "eric",
            "Eric@SafeDocs.rw",
            "--password",
            "initial-secret",
            "--role",
            "manager",
            "--org",
            "Butaro District Hospital",
        ],
    )
    assert result.exit_code == 0, result.output

    with SessionLocal() as session:
        org = session.query(Org).one()
        assert org.slug == "butaro-district-hospital"
        user = session.query(User).filter(User.username == "eric").one()
        assert user.email == "eric@safedocs.rw"
        assert user.role == UserRole.MANAGER
        assert user.org_id == org.id


@pytest.mark.integration
def test_create_user_reports_unknown_org_and_duplicates():
    result = runner.invoke(app, ["create-user", "eric", "eric@safedocs.rw", "--password", "pw-123456", "--org", "Nope"])
    assert result.exit_code == 1

    assert runner.invoke(app, ["create-user", "eric", "eric@safedocs.rw", "--password", "pw-123456"]).exit_code == 0
    duplicate = runner.invoke(app, ["create-user", "eric", "other@safedocs.rw", "--password", "pw-123456"])
    assert duplicate.exit_code == 1


@pytest.mark.integration
def test_reset_password_bumps_token_version():
    runner.invoke(app, ["create-user", "grace", "grace@safedocs.rw", "--password", "old-password"])
    result = runner.invoke(app, ["reset-password", "grace", "--password", "new-password"])
    assert result.exit_code == 0, result.output

    with SessionLocal() as session:
        user = session.query(User).filter(User.username == "grace").one()
        assert verify_password("new-password", user.password_hash)
        assert user.token_version == 1

    assert runner.invoke(app, ["reset-password", "ghost", "--password", "x"]).exit_code == 1


@pytest.mark.integration
def test_purge_expired_links_reports_count():
    result = runner.invoke(app, ["purge-expired-links"])
    assert result.exit_code == 0
    assert "Deactivated 0 expired share link(s)" in result.output
