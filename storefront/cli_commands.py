"""
Flask CLI commands for operators.

Commands:
- flask init-db: Create the database tables
- flask create-admin: Register an administrator
- flask reconciliation: List unresolved loyalty reconciliation entries
"""

import click
import re
from storefront.database import db_session, create_tables
from storefront.models import AdminUser


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        create_tables()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-admin')
    @click.option('--email', prompt=True, help='Admin email address')
    @click.option('--name', default=None, help='Full name')
    def create_admin(email, name):
        """Register an administrator (sign-in is handled by the accounts service)."""
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            click.echo(click.style('Invalid email. Use the format user@example.com', fg='red'))
            return

        if db_session.query(AdminUser).filter_by(email=email).first():
            click.echo(click.style(f'An administrator with email {email} already exists', fg='red'))
            return

        try:
            admin = AdminUser(email=email, full_name=name)
            db_session.add(admin)
            db_session.commit()
            click.echo(click.style('Administrator created', fg='green', bold=True))
            click.echo(f'   Email: {email}')
            click.echo(f'   ID: {admin.id}')
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Could not create administrator: {e}', fg='red'))

    @app.cli.command('reconciliation')
    @click.option('--all', 'include_resolved', is_flag=True, help='Include resolved entries')
    def reconciliation(include_resolved):
        """List loyalty reconciliation entries."""
        from storefront.services.checkout_service import list_reconciliation_entries

        entries = list_reconciliation_entries(db_session, include_resolved=include_resolved)
        if not entries:
            click.echo('No reconciliation entries.')
            return
        for entry in entries:
            state = 'resolved' if entry.is_resolved else 'open'
            click.echo(
                f'#{entry.id} [{state}] order {entry.order_number} customer {entry.customer_id} '
                f'delta {entry.points_delta:+d}: {entry.error}'
            )
