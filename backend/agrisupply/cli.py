# Overview: Flask CLI command groups for bootstrap, inspection, and ledger reporting.

# backend/agrisupply/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with active status.
# - python -m flask users create --username dealer --email dealer@example.com --password "Password123!" --business-name "Green Fields"
#   Create a user (prompts if options are omitted).
#
# Ledger reporting:
# - python -m flask ledger overdue --owner-id 1
#   List customers with overdue credit sales.
# - python -m flask ledger balance 42
#   Show a customer's balance from the latest ledger entry.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, User
from .services.auth_service import create_user, PasswordValidationError, UserExistsError
from .services import ledger_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
@with_appcontext
def reset_db(yes):
    """
    DEV/TEST only: drop and recreate all tables.

    Every user, customer, product, order, promotion and ledger entry is lost.
    """
    if not yes and not click.confirm("This deletes ALL data. Continue?"):
        click.echo("Aborted.")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset complete")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--business-name', default=None, help='Business name shown on invoices')
@with_appcontext
def create_user_cli(username, email, password, business_name):
    """
    Create a new dealer account.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            business_name=business_name,
        )
        click.echo(f"PASS Created user: {user.username} ({user.email}) ID {user.id}")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except UserExistsError as e:
        click.echo(f"FAIL {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Business'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {user.business_name or '-'}")

    click.echo("="*90 + "\n")


# =============================================================================
# LEDGER REPORTING COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Customer credit ledger reports."""


@ledger_group.command('overdue')
@click.option('--owner-id', type=int, required=True, help='Owning user ID')
@with_appcontext
def overdue(owner_id):
    """List customers with unpaid credit sales past their due date."""
    rows = ledger_service.get_overdue_customers(owner_id)
    if not rows:
        click.echo("No overdue customers.")
        return

    click.echo(f"{'ID':<6} {'Customer':<30} {'Phone':<16} {'Overdue':>14} {'Entries':>8}  Oldest due")
    for row in rows:
        oldest = row["oldest_due_date"] or "-"
        click.echo(
            f"{row['customer_id']:<6} {row['customer_name']:<30} {row['customer_phone']:<16} "
            f"{ledger_service.format_rupees(row['total_overdue_cents']):>14} {row['transaction_count']:>8}  {oldest}"
        )
    total = sum(r["total_overdue_cents"] for r in rows)
    click.echo(f"\nTOTAL {ledger_service.format_rupees(total)} across {len(rows)} customer(s)")


@ledger_group.command('balance')
@click.argument('customer_id', type=int)
@with_appcontext
def balance(customer_id):
    """Show a customer's balance as of the latest ledger entry."""
    customer = db.session.get(Customer, customer_id)
    if not customer:
        click.echo(f"FAIL Customer {customer_id} not found")
        return
    cents = ledger_service.get_customer_balance(customer_id)
    click.echo(f"{customer.name}: {ledger_service.format_rupees(cents)}")
    if cents != customer.current_balance_cents:
        click.echo(
            f"WARN  Cached balance {ledger_service.format_rupees(customer.current_balance_cents)} "
            "differs from ledger"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
