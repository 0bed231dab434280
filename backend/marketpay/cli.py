# Overview: Flask CLI command groups for bootstrap, gateway inspection, and period maintenance.

# backend/marketpay/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system gateways
#   Show which Click tenants and Payme credentials are configured.
#
# Contract periods:
# - python -m flask payments backfill [--contract-id 7]
#   Seed period rows from PAID transactions for contracts that have none.
# - python -m flask payments snapshot --contract-id 7
#   Print paid-through / next period / months ahead for one contract.
# - python -m flask payments show EXTERNAL_REFERENCE
#   Print one transaction with its Click records and funded months.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Contract, Transaction
from .services import period_service, transaction_service
from .services.payment_errors import TransactionNotFound
from .validation import NotFoundError


@click.group('system')
def system_group():
    """System bootstrap and configuration checks."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the current models."""
    click.echo("BUILD  Creating tables...")
    db.create_all()
    click.echo("PASS Database schema ready.")


@system_group.command('gateways')
@with_appcontext
def show_gateways():
    """List configured gateway credentials (secrets are never printed)."""
    verifier = current_app.extensions["click_signatures"]
    active_tenant = current_app.config.get("CLICK_TENANT_ID") or "-"

    click.echo("\n" + "="*60)
    click.echo(f"{'Tenant':<20} {'Service ID':<15} {'Merchant ID':<15} {'Active'}")
    click.echo("="*60)
    for tenant_id in verifier.tenant_ids:
        tenant = verifier.tenant(tenant_id)
        active_str = "Yes" if tenant_id == active_tenant else "No"
        click.echo(f"{tenant_id:<20} {tenant.service_id:<15} {tenant.merchant_id:<15} {active_str}")
    if not verifier.tenant_ids:
        click.echo("No Click tenants configured.")
    click.echo("="*60)

    if verifier.tenant(active_tenant) is None:
        click.echo(f"WARN CLICK_TENANT_ID '{active_tenant}' has no credentials")
    payme_key = "set" if current_app.config.get("PAYME_KEY") else "MISSING"
    click.echo(f"Payme login: {current_app.config.get('PAYME_LOGIN')} (key {payme_key})")
    click.echo("")


# =============================================================================
# CONTRACT PERIOD COMMANDS
# =============================================================================

@click.group('payments')
def payments_group():
    """Contract period maintenance and transaction inspection."""


@payments_group.command('backfill')
@click.option('--contract-id', type=int, default=None, help='Only this contract')
@with_appcontext
def backfill_periods(contract_id):
    """
    Seed period rows for contracts that have none.

    Replays each contract's PAID transactions oldest first through the
    allocator. Contracts that already have rows are left untouched, so the
    command is safe to re-run.
    """
    if contract_id is not None:
        ids = [contract_id]
    else:
        ids = [
            row.contract_id
            for row in db.session.query(Transaction.contract_id)
            .filter(Transaction.contract_id.isnot(None))
            .distinct()
            .all()
        ]

    if not ids:
        click.echo("No contract transactions found.")
        return

    seeded = period_service.seed_and_commit(ids)
    click.echo(f"PASS Seeded {seeded} of {len(ids)} contract(s)")


@payments_group.command('snapshot')
@click.option('--contract-id', type=int, required=True, help='Contract ID')
@with_appcontext
def show_snapshot(contract_id):
    """Print the paid-through snapshot for a contract."""
    try:
        snapshot = period_service.get_snapshot(contract_id)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return

    contract = db.session.get(Contract, contract_id)
    store_number = contract.store.store_number if contract.store else "-"
    click.echo(f"\nContract {contract_id} (store {store_number})")
    click.echo(f"   Paid through:       {snapshot['paid_through'] or '-'}")
    click.echo(f"   Next period start:  {snapshot['next_period_start']}")
    click.echo(f"   Months ahead:       {snapshot['months_ahead']}")
    click.echo(f"   Current month paid: {'Yes' if snapshot['has_current_period_paid'] else 'No'}")
    click.echo("")


@payments_group.command('show')
@click.argument('reference')
@with_appcontext
def show_transaction(reference):
    """Print one transaction by external reference."""
    try:
        txn = transaction_service.get(reference)
    except TransactionNotFound as e:
        click.echo(f"FAIL {e}")
        return

    billable = f"contract {txn.contract_id}" if txn.contract_id else f"attendance {txn.attendance_id}"
    click.echo(f"\n{txn.external_reference}: {txn.status} (state {txn.gateway_state})")
    click.echo(f"   Method:   {txn.payment_method}")
    click.echo(f"   Amount:   {txn.amount}")
    click.echo(f"   Billable: {billable}")
    click.echo(f"   Created:  {txn.created_at}")
    if txn.performed_at:
        click.echo(f"   Paid:     {txn.performed_at}")
    if txn.canceled_at:
        click.echo(f"   Canceled: {txn.canceled_at} (reason {txn.cancel_reason})")

    for record in txn.click_records:
        click.echo(
            f"   Click {record.click_trans_id}: prepare #{record.id} status {record.status} error {record.error}"
        )
    for period in sorted(txn.periods, key=lambda p: p.period_start):
        click.echo(f"   Month {period.period_start:%Y-%m}: {period.status}")
    click.echo("")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(payments_group)
