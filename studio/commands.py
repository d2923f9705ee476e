# commands.py
"""
Housekeeping commands, meant to be run from cron:

    flask --app run studio expire-packages
    flask --app run studio mark-overdue
    flask --app run studio send-reminders
"""
from datetime import date

import click
from flask import current_app
from flask.cli import AppGroup

from . import db, logger
from .models.user import Role
from .services.auth_service import StaffService
from .services.email_service import EmailService
from .services.invoice_service import InvoiceService, ensure_sequence
from .services.package_service import PackageService

studio_cli = AppGroup('studio', help='Studio housekeeping commands.')


@studio_cli.command('init-db')
def init_db():
    """Create missing tables and the invoice number sequence."""
    db.create_all()
    ensure_sequence()
    click.echo('Database initialised')


@studio_cli.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--first-name', default='Studio')
@click.option('--last-name', default='Admin')
def create_admin(email, password, first_name, last_name):
    """Create the first admin account."""
    user = StaffService.create_staff({
        'email': email,
        'password': password,
        'first_name': first_name,
        'last_name': last_name,
        'role': Role.ADMIN.value
    })
    click.echo(f'Created admin {user.email}')


@studio_cli.command('expire-packages')
def expire_packages():
    """Mark client packages past their expiry date as expired."""
    count = PackageService.expire_packages(date.today())
    click.echo(f'{count} package(s) expired')


@studio_cli.command('mark-overdue')
def mark_overdue():
    """Move sent invoices past their due date to overdue."""
    count = InvoiceService.mark_overdue_invoices(date.today())
    click.echo(f'{count} invoice(s) marked overdue')


@studio_cli.command('send-reminders')
@click.option('--days', type=int, default=None, help='Expiry warning window in days.')
@click.option('--threshold', type=int, default=None, help='Remaining sessions that count as low.')
def send_reminders(days, threshold):
    """Email clients whose packages expire soon or are nearly used up."""
    days = days if days is not None else current_app.config['PACKAGE_EXPIRY_WARNING_DAYS']
    threshold = threshold if threshold is not None else current_app.config['LOW_SESSIONS_THRESHOLD']

    expiring = PackageService.find_expiring_packages(date.today(), within_days=days)
    for client_package in expiring:
        EmailService.send_package_expiry_reminder(client_package)

    already_notified = {cp.id for cp in expiring}
    low = [cp for cp in PackageService.find_low_session_packages(threshold) if cp.id not in already_notified]
    for client_package in low:
        EmailService.send_low_sessions_reminder(client_package)

    logger.info(f"Queued {len(expiring)} expiry and {len(low)} low-session reminders")
    click.echo(f'{len(expiring)} expiry reminder(s), {len(low)} low-session reminder(s)')
