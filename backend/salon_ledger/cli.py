# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/salon_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
#   List all tenants.
# - python -m flask tenants create --name "Salon Lola" --code "LOLA" --tax-id "B12345678"
#   Create a new tenant (salon account).
#
# Cash ledger inspection:
# - python -m flask cash sessions --tenant-id 1 --status open --limit 20
#   List recent cash sessions with optional filters.
#
# Invoicing maintenance:
# - python -m flask invoices sweep-overdue [--tenant-id 1] [--as-of 2026-03-31]
#   Mark issued, unpaid invoices past their due date as overdue (run daily).
# - python -m flask invoices counters --tenant-id 1
#   Show invoice sequence counters (next value per series and year).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import CashSession
from .services import invoice_service, sequence_service, tenant_service
from .time_utils import parse_iso_date
from .validation import LedgerError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask tenants create' to add a tenant.")


# =============================================================================
# TENANTS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant (salon account) management commands."""


@tenants_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive tenants')
@with_appcontext
def list_tenants_cli(include_inactive):
    """List all tenants."""
    tenants = tenant_service.list_tenants(include_inactive=include_inactive)

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Tax ID':<12} {'Active'}")
    click.echo("="*80)

    for tenant in tenants:
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code:<15} {tenant.tax_id or '-':<12} {active_str}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant display name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--legal-name', help='Legal name printed on invoices')
@click.option('--tax-id', help='NIF/CIF of the issuer')
@click.option('--address', help='Street address')
@click.option('--postal-code', help='Postal code')
@click.option('--city', help='City')
@click.option('--province', help='Province')
@with_appcontext
def create_tenant_cli(name, code, legal_name, tax_id, address, postal_code, city, province):
    """Create a new tenant."""
    try:
        tenant = tenant_service.create_tenant(
            name=name,
            code=code,
            legal_name=legal_name,
            tax_id=tax_id,
            address=address,
            postal_code=postal_code,
            city=city,
            province=province,
        )
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    if tenant.tax_id and not invoice_service.validate_tax_id(tenant.tax_id):
        click.echo(f"WARN Tax ID '{tenant.tax_id}' does not look like a valid NIF/NIE/CIF")
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


# =============================================================================
# CASH LEDGER
# =============================================================================

@click.group('cash')
def cash_group():
    """Cash session ledger inspection commands."""


@cash_group.command('sessions')
@click.option('--tenant-id', type=int, help='Filter by tenant ID')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(tenant_id, status, limit):
    """
    List cash sessions.

    Example:
        flask cash sessions
        flask cash sessions --tenant-id 1
        flask cash sessions --status open
    """
    query = db.session.query(CashSession)

    if tenant_id:
        query = query.filter_by(tenant_id=tenant_id)

    if status:
        query = query.filter_by(status=status)

    sessions = query.order_by(CashSession.opened_at.desc()).limit(limit).all()

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Tenant':<8} {'Status':<8} {'Opened':<20} {'Initial':<12} {'Counted':<12} {'Difference':<12} {'Notes'}")
    click.echo("="*110)

    for session in sessions:
        opened = session.opened_at.strftime("%Y-%m-%d %H:%M") if session.opened_at else "-"
        initial = f"{session.initial_amount_cents / 100:.2f}"
        counted = "-"
        if session.final_amount_counted_cents is not None:
            counted = f"{session.final_amount_counted_cents / 100:.2f}"
        difference = "-"
        if session.difference_cents is not None:
            difference = f"{session.difference_cents / 100:+.2f}"
        notes = (session.closing_notes or session.notes or "")[:30]

        click.echo(f"{session.id:<5} {session.tenant_id:<8} {session.status:<8} {opened:<20} {initial:<12} {counted:<12} {difference:<12} {notes}")

    click.echo("="*110 + "\n")


# =============================================================================
# INVOICES
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Invoice maintenance commands."""


@invoices_group.command('sweep-overdue')
@click.option('--tenant-id', type=int, help='Only sweep this tenant (default: all tenants)')
@click.option('--as-of', help='Reference date YYYY-MM-DD (default: today UTC)')
@with_appcontext
def sweep_overdue_cli(tenant_id, as_of):
    """
    Mark issued, unpaid invoices past their due date as overdue.

    Example:
        flask invoices sweep-overdue
        flask invoices sweep-overdue --tenant-id 1 --as-of 2026-03-31
    """
    try:
        as_of_date = parse_iso_date(as_of) if as_of else None
    except ValueError:
        raise click.BadParameter(f"{as_of!r} is not a YYYY-MM-DD date", param_hint="--as-of")
    count = invoice_service.sweep_overdue(tenant_id, as_of=as_of_date)
    click.echo(f"PASS Marked {count} invoice(s) overdue")


@invoices_group.command('counters')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def list_counters_cli(tenant_id):
    """Show invoice sequence counters for a tenant."""
    counters = sequence_service.list_counters(tenant_id)

    if not counters:
        click.echo("No counters found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'Type':<14} {'Series':<8} {'Period':<8} {'Next number'}")
    click.echo("="*60)

    for counter in counters:
        prefix = sequence_service.SERIES_PREFIXES.get(counter.document_type, "?")
        next_number = sequence_service.format_number(prefix, counter.period_key, counter.next_value)
        click.echo(f"{counter.document_type:<14} {prefix:<8} {counter.period_key:<8} {next_number}")

    click.echo("="*60 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)  # Multi-tenant account management
    app.cli.add_command(cash_group)
    app.cli.add_command(invoices_group)
