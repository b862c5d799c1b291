# Overview: Flask CLI command groups for bootstrap and reference data.

# backend/flightops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management:
# - python -m flask orgs list
# - python -m flask orgs create --name "Skyline Aero Club" --code "SKY"
#
# Users:
# - python -m flask users create --org-id 1 --email ops@example.com --password "Password123!" --role admin
#
# Fleet / billing reference data:
# - python -m flask fleet add-aircraft --org-id 1 --registration ZK-ABC --type C172
# - python -m flask billing add-chargeable --org-id 1 --name "C172 rental" --type aircraft_rental --rate-cents 25000
# - python -m flask billing add-credit --org-id 1 --user-id 5 --amount-cents 50000 --actor-id 1

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import OperationError
from .extensions import db
from .models import Aircraft, Chargeable, Organization, User
from .permissions import VALID_ROLES
from .services.auth_service import create_user, add_membership, PasswordValidationError
from .services import account_service


CHARGEABLE_TYPES = [
    "aircraft_rental",
    "instructor_fee",
    "membership_fee",
    "landing_fee",
    "facility_rental",
    "product_sale",
    "service_fee",
    "other",
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("PASS Database schema created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (flight school) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Members':<8} {'Tax (bps)'}")
    click.echo("="*80)

    for org in orgs:
        active_str = "Yes" if org.is_active else "No"
        click.echo(
            f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} "
            f"{len(org.memberships):<8} {org.default_tax_rate_bps}"
        )

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--tax-rate-bps', type=int, default=None, help='Default tax rate in basis points')
@with_appcontext
def create_org_cli(name, code, tax_rate_bps):
    """Create a new organization."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    if tax_rate_bps is None:
        tax_rate_bps = current_app.config["DEFAULT_TAX_RATE_BPS"]

    org = Organization(name=name, code=code, is_active=True, default_tax_rate_bps=tax_rate_bps)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--email', prompt=True, help='Email address')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(org_id, email, first_name, last_name, password, role):
    """
    Create a user and grant them a role in an organization.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        org = db.session.get(Organization, org_id)
        if not org:
            click.echo(f"FAIL Organization ID {org_id} not found")
            return

        user = create_user(email=email, password=password, first_name=first_name, last_name=last_name)
        add_membership(user.id, org.id, role)

        click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{role}'")
        click.echo(f"     Organization: {org.name} (ID: {org.id})")
        click.echo("SECURITY Password securely hashed with bcrypt")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


# =============================================================================
# FLEET
# =============================================================================

@click.group('fleet')
def fleet_group():
    """Aircraft reference data."""


@fleet_group.command('add-aircraft')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--registration', required=True, help='Registration, e.g. ZK-ABC')
@click.option('--type', 'aircraft_type', required=True, help='Type, e.g. C172')
@click.option('--model', default=None)
@click.option('--manufacturer', default=None)
@with_appcontext
def add_aircraft_cli(org_id, registration, aircraft_type, model, manufacturer):
    """Add an aircraft to an organization's fleet."""
    if not db.session.get(Organization, org_id):
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    registration = registration.strip().upper()
    existing = db.session.query(Aircraft).filter_by(organization_id=org_id, registration=registration).first()
    if existing:
        click.echo(f"FAIL Aircraft '{registration}' already exists in this organization")
        return

    aircraft = Aircraft(
        organization_id=org_id,
        registration=registration,
        type=aircraft_type,
        model=model,
        manufacturer=manufacturer,
    )
    db.session.add(aircraft)
    db.session.commit()

    click.echo(f"PASS Added aircraft {aircraft.registration} (ID: {aircraft.id})")


# =============================================================================
# BILLING
# =============================================================================

@click.group('billing')
def billing_group():
    """Chargeables and member credit."""


@billing_group.command('add-chargeable')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True)
@click.option('--type', 'chargeable_type', type=click.Choice(CHARGEABLE_TYPES), default='other', show_default=True)
@click.option('--rate-cents', type=click.IntRange(min=0), required=True, help='Default unit rate in cents')
@click.option('--description', default=None)
@with_appcontext
def add_chargeable_cli(org_id, name, chargeable_type, rate_cents, description):
    """Add a billable catalog entry."""
    if not db.session.get(Organization, org_id):
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    chargeable = Chargeable(
        organization_id=org_id,
        name=name,
        description=description,
        type=chargeable_type,
        rate_cents=rate_cents,
        is_active=True,
    )
    db.session.add(chargeable)
    db.session.commit()

    click.echo(f"PASS Added chargeable '{chargeable.name}' (ID: {chargeable.id}) at {rate_cents} cents")


@billing_group.command('add-credit')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--user-id', type=int, required=True, help='Member user ID')
@click.option('--amount-cents', type=click.IntRange(min=1), required=True)
@click.option('--actor-id', type=int, required=True, help='Staff user recording the credit')
@click.option('--description', default=None)
@with_appcontext
def add_credit_cli(org_id, user_id, amount_cents, actor_id, description):
    """Top up a member's prepaid account credit."""
    if not db.session.get(User, actor_id):
        click.echo(f"FAIL User ID {actor_id} not found")
        return
    try:
        account, txn = account_service.credit_account(
            org_id, user_id, amount_cents, actor_id, description=description
        )
    except OperationError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Credit balance is now {account.balance_cents} cents (transaction {txn.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(fleet_group)
    app.cli.add_command(billing_group)
