"""
``flask staff`` commands for bootstrapping staff accounts.
"""

from __future__ import annotations

import click
from flask.cli import ScriptInfo

from flask_app.models import Staff, StaffRole
from flask_app.services.staff_service import StaffService, StaffValidationError


@click.group(name="staff")
def staff_cli():
    """Staff account management commands."""


@staff_cli.command("create")
@click.option("--email", required=True, help="Sign-in email address.")
@click.option("--first-name", required=True)
@click.option("--last-name", required=True)
@click.option("--admin", is_flag=True, help="Grant the admin role.")
@click.pass_context
def staff_create(ctx, email: str, first_name: str, last_name: str, admin: bool):
    """Create a staff account that can sign in with an emailed code."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    with app.app_context():
        try:
            staff = StaffService.create_staff(
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=StaffRole.ADMIN if admin else StaffRole.STAFF,
            )
        except StaffValidationError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Created {staff.role.value} account for {staff.email} (id={staff.id}).")


@staff_cli.command("list")
@click.pass_context
def staff_list(ctx):
    """List staff accounts."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    with app.app_context():
        members = Staff.query.order_by(Staff.email).all()
        if not members:
            click.echo("No staff accounts.")
            return
        for member in members:
            status = "active" if member.is_active else "inactive"
            click.echo(f"{member.id}\t{member.email}\t{member.role.value}\t{status}")


def register_cli(app):
    """Attach the staff command group to ``app.cli``."""
    if staff_cli.name in app.cli.commands:
        app.cli.commands.pop(staff_cli.name)
    app.cli.add_command(staff_cli)
