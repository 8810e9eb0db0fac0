# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory inspection/repair:
# - python -m flask inventory verify
#   Check aggregate == sum of variants and ledger arithmetic; exits 1 on violations.
# - python -m flask inventory recompute-totals
#   Rebuild product total_stock from variant stock.
# - python -m flask inventory low-stock --threshold 5
#   List products with aggregate or any variant in (0, threshold].

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db


@click.group("system")
def system_group():
    """Database bootstrap commands."""


@system_group.command("init-db")
@with_appcontext
def init_db_command():
    db.create_all()
    click.echo("Database tables created.")


@system_group.command("reset-db")
@with_appcontext
@click.option("--yes", is_flag=True, help="Confirm dropping all data.")
def reset_db_command(yes: bool):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        raise click.UsageError("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("Database reset.")


@click.group("inventory")
def inventory_group():
    """Stock consistency tools."""


@inventory_group.command("verify")
@with_appcontext
def verify_command():
    from .services.stock_service import verify_stock_invariants

    violations = verify_stock_invariants()
    if not violations:
        click.echo("OK: stock aggregates and ledger are consistent.")
        return
    for violation in violations:
        click.echo(" ".join(f"{k}={v}" for k, v in violation.items()))
    click.echo(f"{len(violations)} violation(s) found.", err=True)
    raise SystemExit(1)


@inventory_group.command("recompute-totals")
@with_appcontext
def recompute_totals_command():
    from .services.concurrency import begin_write
    from .services.stock_service import recompute_all_product_totals

    begin_write()
    count = recompute_all_product_totals()
    db.session.commit()
    click.echo(f"Recomputed total_stock for {count} product(s).")


@inventory_group.command("low-stock")
@with_appcontext
@click.option("--threshold", type=int, default=None, help="Defaults to DEFAULT_LOW_STOCK_THRESHOLD.")
def low_stock_command(threshold: int | None):
    from .services.stock_service import get_low_stock_products

    if threshold is None:
        threshold = current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 5)
    rows = get_low_stock_products(threshold)
    if not rows:
        click.echo("No low stock products.")
        return
    for row in rows:
        click.echo(f"{row['id']:>6}  {row['total_stock']:>6}  {row['name']}")
        for variant in row["low_stock_variants"]:
            click.echo(f"        {variant['sku']}: {variant['stock_quantity']} (threshold {variant['low_stock_threshold']})")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
