from __future__ import annotations

import re
from typing import Optional

import typer

from .db.session import SessionLocal
from .models import Org, User, UserRole
from .services.auth import AuthError, AuthService
from .services.expiry import deactivate_expired_share_links

app = typer.Typer(help="SafeDocs administrative CLI")


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


@app.command()
def create_org(
    name: str = typer.Argument(..., help="Organization name"),
    slug: Optional[str] = typer.Option(None, "--slug", "-s", help="URL slug (derived from the name when omitted)"),
    description: str = typer.Option("", "--description", "-d", help="Optional description"),
) -> None:
    """Create an organization, or report the existing one with the same name."""
    db = SessionLocal()
    try:
        org = db.query(Org).filter(Org.name == name).one_or_none()
        if org is None:
            org = Org(name=name, slug=slug or _slugify(name), description=description or None)
            db.add(org)
            db.commit()
            typer.echo(f"Created organization {org.name} ({org.id})")
        else:
            typer.echo(f"Organization {org.name} already exists ({org.id})")
    finally:
        db.close()


@app.command()
def create_user(
    username: str = typer.Argument(..., help="Login name"),
    email: str = typer.Argument(..., help="User email"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True),
    role: UserRole = typer.Option(UserRole.USER, "--role", "-r", case_sensitive=False, help="Account role"),
    org_name: Optional[str] = typer.Option(None, "--org", "-o", help="Organization name to join"),
    full_name: str = typer.Option("", "--full-name", "-f", help="Optional full name"),
) -> None:
    """Create a user account, optionally attached to an organization."""
    db = SessionLocal()
    try:
        org_id = None
        if org_name:
            org = db.query(Org).filter(Org.name == org_name).one_or_none()
            if org is None:
                typer.echo(f"Organization {org_name} not found", err=True)
                raise typer.Exit(code=1)
            org_id = org.id

        try:
            user = AuthService(db).register(username, email, password, full_name or None, role, org_id)
        except AuthError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=1)
        db.commit()
        typer.echo(f"Created {user.role.value} {user.username} <{user.email}> ({user.id})")
    finally:
        db.close()


@app.command()
def reset_password(
    username: str = typer.Argument(..., help="Login name"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True),
) -> None:
    """Set a new password and sign the user out everywhere."""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.username == username).one_or_none()
        if user is None:
            typer.echo(f"User {username} not found", err=True)
            raise typer.Exit(code=1)
        AuthService(db).set_password(user, password)
        db.commit()
        typer.echo(f"Password reset for {user.username}; existing sessions revoked")
    finally:
        db.close()


@app.command()
def purge_expired_links() -> None:
    """Deactivate share links whose expiry has passed."""
    db = SessionLocal()
    try:
        count = deactivate_expired_share_links(db)
        db.commit()
        typer.echo(f"Deactivated {count} expired share link(s)")
    finally:
        db.close()


if __name__ == "__main__":
    app()
