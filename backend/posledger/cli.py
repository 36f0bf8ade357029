# Overview: Flask CLI command groups for tenant bootstrap, numbering and ledger checks.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "posledger:create_app" (PowerShell: $env:FLASK_APP="posledger:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Tenant bootstrap:
# - python -m flask tenants list
#   List all tenants with their edit windows.
# - python -m flask tenants create --name "Corner Shop" --code "CORNER" [--tax-lock-days 30] [--operator-window-hours 24]
#   Create a tenant (shop). Omitted windows fall back to the application defaults.
#
# Document numbering:
# - python -m flask sequences configure --tenant-id 1 --type bill --prefix INV --pattern "{PREFIX}/{YEAR}/{SEQUENCE4}"
#   Change a tenant's prefix, pattern or next counter value for one document type.
#
# Stock ledger:
# - python -m flask ledger verify --tenant-id 1 [--product-id 7]
#   Replay the ledger and report broken chains or stock mismatches. Exits 1 on problems.

import sys

import click
from flask.cli import with_appcontext

from .errors import CommerceError
from .extensions import db
from .models import Tenant
from .services import numbering_service, stock_ledger_service


@click.group('tenants')
def tenants_group():
    """Tenant (shop) management."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()
    if not tenants:
        click.echo("No tenants found.")
        return
    for tenant in tenants:
        status = "active" if tenant.is_active else "inactive"
        click.echo(
            f"{tenant.id:>4}  {tenant.name}  code={tenant.code or '-'}  "
            f"tax_lock_days={tenant.tax_lock_days or 'default'}  "
            f"operator_window_hours={tenant.operator_edit_window_hours or 'default'}  [{status}]"
        )


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', default=None, help='Unique short code')
@click.option('--tax-lock-days', type=int, default=None, help='Override TAX_LOCK_DAYS for this tenant')
@click.option('--operator-window-hours', type=int, default=None,
              help='Override OPERATOR_EDIT_WINDOW_HOURS for this tenant')
@click.option('--allow-negative-stock', is_flag=True, default=False, help='Let sales drive stock below zero')
@with_appcontext
def create_tenant(name, code, tax_lock_days, operator_window_hours, allow_negative_stock):
    """Create a tenant."""
    if code and db.session.query(Tenant).filter_by(code=code).first():
        click.echo(f"FAIL Tenant code '{code}' already exists")
        sys.exit(1)

    tenant = Tenant(
        name=name,
        code=code,
        tax_lock_days=tax_lock_days,
        operator_edit_window_hours=operator_window_hours,
        allow_negative_stock=allow_negative_stock,
        is_active=True,
    )
    db.session.add(tenant)
    db.session.commit()
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")


@click.group('sequences')
def sequences_group():
    """Document numbering configuration."""


@sequences_group.command('configure')
@click.option('--tenant-id', type=int, required=True)
@click.option('--type', 'document_type', required=True,
              type=click.Choice(sorted(numbering_service.DEFAULT_PREFIXES)))
@click.option('--prefix', default=None)
@click.option('--pattern', default=None, help='Tokens: {PREFIX} {DATE} {YEAR} {MONTH} {DAY} {SEQUENCE[2-4]}')
@click.option('--next', 'next_sequence', type=int, default=None, help='Next counter value')
@with_appcontext
def configure_sequence(tenant_id, document_type, prefix, pattern, next_sequence):
    if db.session.get(Tenant, tenant_id) is None:
        click.echo(f"FAIL Tenant {tenant_id} not found")
        sys.exit(1)
    try:
        seq = numbering_service.configure_sequence(
            tenant_id=tenant_id,
            document_type=document_type,
            prefix=prefix,
            pattern=pattern,
            next_sequence=next_sequence,
        )
    except CommerceError as e:
        click.echo(f"FAIL {e.message}")
        sys.exit(1)

    preview = numbering_service.preview_document_number(tenant_id=tenant_id, document_type=document_type)
    click.echo(f"PASS {document_type}: prefix={seq.prefix} pattern={seq.pattern} next={seq.next_sequence}")
    click.echo(f"     next number: {preview}")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection."""


@ledger_group.command('verify')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, default=None)
@with_appcontext
def verify_ledger(tenant_id, product_id):
    report = stock_ledger_service.verify_ledger(tenant_id=tenant_id, product_id=product_id)
    click.echo(f"Checked {report['products_checked']} product(s) for tenant {tenant_id}")
    if report["ok"]:
        click.echo("PASS Ledger is consistent")
        return

    for problem in report["problems"]:
        click.echo(
            f"FAIL product={problem['product_id']} entry={problem['entry_id']} "
            f"{problem['problem']}: expected {problem['expected']}, got {problem['actual']}"
        )
    sys.exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tenants_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(ledger_group)
