"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask create-admin: Create a new platform operator
- flask billing charge-recurring: Daily recurring billing run (cron)
- flask billing check-expiry: Daily expiry warnings and lapses (cron)
"""

import re

import click
from flask.cli import AppGroup

from stockflow.database import get_session, create_all
from stockflow.models import AdminUser
from stockflow.services.jobs import build_expiry_service, run_recurring_billing, run_subscription_expiry

billing_cli = AppGroup('billing', help='Subscription billing jobs.')


@billing_cli.command('charge-recurring')
def charge_recurring():
    """Charge stored cards for subscriptions ending in the next days."""
    result = run_recurring_billing()
    if result is None:
        click.echo(click.style('❌ El cobro recurrente falló, revisa los logs.', fg='red'))
        raise SystemExit(1)
    click.echo(
        f"Intentos: {result['attempted']} | Exitosos: {result['succeeded']} | "
        f"Pendientes: {result['pending']} | Fallidos: {result['failed']}"
    )


@billing_cli.command('check-expiry')
@click.option('--dry-run', is_flag=True, help='Only count, do not notify or expire')
def check_expiry(dry_run):
    """Send expiration warnings and expire lapsed subscriptions."""
    if dry_run:
        result = build_expiry_service().run_expiry_check()
    else:
        result = run_subscription_expiry()
    click.echo(
        f"Vencen en 7 días: {result['expiring_7_days']} | "
        f"Vencen mañana: {result['expiring_tomorrow']} | "
        f"Vencidas: {result['expired']}"
    )


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    app.cli.add_command(billing_cli)

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables."""
        create_all()
        click.echo(click.style('✅ Tablas creadas', fg='green'))

    @app.cli.command('create-admin')
    @click.option('--email', prompt=True, help='Admin email address')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
    def create_admin(email, password):
        """Create a new platform operator."""
        db_session = get_session()

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            click.echo(click.style('❌ Email inválido. Use formato: user@example.com', fg='red'))
            return

        if len(password) < 8:
            click.echo(click.style('❌ La contraseña debe tener al menos 8 caracteres.', fg='red'))
            return

        if db_session.query(AdminUser).filter_by(email=email).first():
            click.echo(click.style(f'❌ Ya existe un administrador con el email: {email}', fg='red'))
            return

        try:
            admin = AdminUser(email=email)
            admin.set_password(password)
            db_session.add(admin)
            db_session.commit()

            click.echo(click.style('\n✅ Administrador creado exitosamente!', fg='green', bold=True))
            click.echo(f'   Email: {email}')
            click.echo(f'   ID: {admin.id}')
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'❌ Error al crear administrador: {str(e)}', fg='red'))
