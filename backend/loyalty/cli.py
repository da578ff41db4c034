# Overview: Flask CLI command groups for bootstrap, member setup and QR debugging.

# backend/loyalty/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--with-users]
#   Create all tables (idempotent). --with-users also creates admin/staff accounts.
#
# User bootstrap:
# - python -m flask users create --username admin --email admin@loyalty.local --password "Password123!" --role admin
#   Create a user (prompts if options are omitted). Member users need --member-id.
#
# Member bootstrap:
# - python -m flask members create --name "Juan Dela Cruz" [--code BMPC-000123] [--branch Main]
#   Create a member with a zero balance.
#
# QR debugging:
# - python -m flask qr sign BMPC-000123 [--validity 86400]
#   Print a signed QR payload for a member code.
# - python -m flask qr verify '{"member_id": "...", "issued_at": ..., "expires_at": ..., "checksum": "..."}'
#   Verify a payload and print the result.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .context import RequestContext
from .extensions import db
from .models import User
from .models.auth import ROLES
from .services import member_service, qr_service
from .services.auth_service import create_user
from .validation import LoyaltyError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--with-users', is_flag=True, help='Create default admin and staff accounts')
@with_appcontext
def init_system(with_users):
    """
    Create all tables and, optionally, default users.

    Default users: admin/admin@loyalty.local, staff/staff@loyalty.local
    Default password: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing loyalty system...")

    db.create_all()
    click.echo("PASS Tables created")

    if not with_users:
        return

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"
    for username, role in (("admin", "admin"), ("staff", "staff")):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User '{username}' already exists")
            continue
        create_user(username, f"{username}@loyalty.local", default_password, role=role)
        click.echo(f"PASS Created user: {username} (role: {role})")

    click.echo("\nWARNING Default password is 'Password123!'. Change it before going live.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--member-id', type=int, default=None, help='Linked member (role=member only)')
@with_appcontext
def create_user_cli(username, email, password, role, member_id):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username, email, password, role=role, member_id=member_id)
    except LoyaltyError as e:
        raise click.ClickException(f"FAIL {e.message}")

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@click.group('members')
def members_group():
    """Member management commands."""


@members_group.command('create')
@click.option('--name', prompt=True, help='Full name')
@click.option('--code', 'member_code', default=None, help='Member code (generated when omitted)')
@click.option('--email', default=None)
@click.option('--phone', default=None)
@click.option('--branch', default=None)
@with_appcontext
def create_member_cli(name, member_code, email, phone, branch):
    """Create a member with a zero balance."""
    data = {"name": name}
    for key, value in (("member_code", member_code), ("email", email), ("phone", phone), ("branch", branch)):
        if value:
            data[key] = value

    try:
        member = member_service.create_member(data, RequestContext.system())
    except LoyaltyError as e:
        raise click.ClickException(f"FAIL {e.message}")

    click.echo(f"PASS Created member: {member.name} (ID: {member.id}, Code: {member.member_code})")


@click.group('qr')
def qr_group():
    """QR payload signing and verification (debugging)."""


@qr_group.command('sign')
@click.argument('member_code')
@click.option('--validity', type=int, default=None, help='Validity in seconds (default QR_VALIDITY_SECONDS)')
@with_appcontext
def sign_qr(member_code, validity):
    """Print a signed QR payload for MEMBER_CODE."""
    validity = validity or current_app.config.get("QR_VALIDITY_SECONDS", qr_service.DEFAULT_VALIDITY_SECONDS)
    payload = qr_service.sign_payload(
        member_code,
        validity,
        secret=qr_service.resolve_secret(current_app.config),
    )
    click.echo(json.dumps(payload))


@qr_group.command('verify')
@click.argument('payload_json')
@with_appcontext
def verify_qr(payload_json):
    """Verify a QR payload given as a JSON string."""
    try:
        payload = json.loads(payload_json)
    except json.JSONDecodeError:
        raise click.ClickException("FAIL Payload is not valid JSON")

    result = qr_service.verify_payload(payload, secret=qr_service.resolve_secret(current_app.config))
    if result.valid:
        click.echo(f"PASS Valid QR for member {result.member_code}")
    else:
        raise click.ClickException(f"FAIL {result.error.value}: {result.message}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(members_group)
    app.cli.add_command(qr_group)
