from __future__ import annotations

import click
from flask.cli import AppGroup

from ..bootstrap import bootstrap_defaults
from ..extensions import db
from ..models import AppSettings, Role, User, UserStatus


users_cli = AppGroup("users", help="User account maintenance.")


def upsert_admin(username: str, password: str) -> tuple[User, bool]:
    """Create the admin account or reset an existing one to an active admin."""
    bootstrap_defaults()
    admin_role = Role.query.filter_by(name="admin").one()

    user = User.query.filter_by(username=username).one_or_none()
    created = user is None
    if user is None:
        user = User(username=username, quota_used_bytes=0, quota_limit_bytes=AppSettings.singleton().default_quota)
        db.session.add(user)

    user.set_password(password)
    user.status = UserStatus.ACTIVE.value
    if admin_role not in user.roles:
        user.roles.append(admin_role)
    db.session.commit()
    return user, created


@users_cli.command("create-admin")
@click.option("--username", envvar="ADMIN_USERNAME", default="admin", show_default=True)
@click.option("--password", envvar="ADMIN_PASSWORD", prompt=True, hide_input=True, confirmation_prompt=True)
def create_admin_command(username: str, password: str) -> None:
    """Create or update an administrator account."""
    if len(password) < 8:
        raise click.BadParameter("must be at least 8 characters", param_hint="--password")
    user, created = upsert_admin(username.strip(), password)
    click.echo(f"{'Created' if created else 'Updated'} admin user: {user.username}")
