"""
Flask CLI commands for database and ledger maintenance.

Commands:
- flask init-db: Create all tables
- flask verify-ledger: Replay the stock ledger against current stock
"""

import click
from mrp_ledger.database import get_session, create_tables
from mrp_ledger.services.stock_ledger_service import verify_ledger


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables (existing tables are left alone)."""
        create_tables()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('verify-ledger')
    @click.option('--product-id', type=int, default=None, help='Only verify this product')
    def verify_ledger_command(product_id):
        """Check that replaying movements reproduces every product's current stock."""
        report = verify_ledger(get_session(), product_id=product_id)

        broken = [r for r in report if not r['consistent']]
        for row in broken:
            click.echo(click.style(
                f"Product {row['product_id']} ({row['product_name']}): "
                f"stock {row['current_stock']}, replayed {row['replayed_balance']}, "
                f"mismatched movements {row['mismatched_movement_ids']}",
                fg='red'
            ))

        click.echo(f"{len(report)} products checked, {len(broken)} inconsistent.")
        if broken:
            raise SystemExit(1)
