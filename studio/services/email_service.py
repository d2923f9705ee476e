# services/email_service.py
"""
Transactional email over an HTTP API.

Emails are fire-and-forget: ``send_*`` calls hand the message to a small
thread pool and return immediately. Delivery problems are logged and never
surface to the operation that triggered the email.
"""
from concurrent.futures import ThreadPoolExecutor

import requests
from flask import current_app
from retry.api import retry_call

from .. import logger

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='studio-email')

TRANSIENT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


def _post_email(settings, payload):
    headers = {
        'Authorization': f"Bearer {settings['api_key']}",
        'Content-Type': 'application/json'
    }
    response = requests.post(settings['url'], json=payload, headers=headers, timeout=settings['timeout'])
    response.raise_for_status()
    return response


def _deliver(settings, payload):
    try:
        retry_call(
            _post_email,
            fargs=[settings, payload],
            exceptions=TRANSIENT_ERRORS,
            tries=settings['tries'],
            delay=1,
            backoff=2
        )
        logger.info(f"Email '{payload['subject']}' sent to {payload['to']}")
        return True
    except requests.exceptions.RequestException as e:
        logger.error(f"Email '{payload['subject']}' to {payload['to']} failed: {e}")
        return False


class EmailService:

    @staticmethod
    def _settings():
        config = current_app.config
        return {
            'url': config.get('EMAIL_API_URL'),
            'api_key': config.get('EMAIL_API_KEY'),
            'sender': config.get('EMAIL_FROM'),
            'timeout': config.get('EMAIL_TIMEOUT', 10),
            'tries': config.get('EMAIL_RETRY_TRIES', 3),
            'async': config.get('EMAIL_ASYNC', True),
            'app_name': config.get('APP_NAME', 'Studio Manager'),
        }

    @staticmethod
    def send(to, subject, html):
        """
        Queue one email. Returns False when email is not configured, otherwise
        True once the message is queued (or the delivery result when running
        synchronously).
        """
        settings = EmailService._settings()
        if not settings['url'] or not settings['api_key']:
            logger.info(f"Email not configured; skipping '{subject}' to {to}")
            return False

        payload = {'from': settings['sender'], 'to': [to], 'subject': subject, 'html': html}
        if not settings['async']:
            return _deliver(settings, payload)

        future = _executor.submit(_deliver, settings, payload)
        future.add_done_callback(_log_unexpected_failure)
        return True

    @staticmethod
    def send_welcome_email(email, first_name=None):
        app_name = EmailService._settings()['app_name']
        greeting = f"Hi {first_name}," if first_name else "Hi,"
        return EmailService.send(
            email,
            f"Welcome to {app_name}",
            f"<p>{greeting}</p><p>Your {app_name} account is ready. "
            f"You can now log in to view your sessions and packages.</p>"
        )

    @staticmethod
    def send_password_change_notification(email, first_name=None):
        greeting = f"Hi {first_name}," if first_name else "Hi,"
        return EmailService.send(
            email,
            "Your password was changed",
            f"<p>{greeting}</p><p>The password for your account was just changed. "
            f"If this wasn't you, contact the studio immediately.</p>"
        )

    @staticmethod
    def send_package_expiry_reminder(client_package):
        client = client_package.client
        return EmailService.send(
            client.email,
            f"Your {client_package.package.name} package expires soon",
            f"<p>Hi {client.first_name},</p>"
            f"<p>Your <strong>{client_package.package.name}</strong> package expires on "
            f"{client_package.expiry_date.isoformat()} with {client_package.sessions_remaining} "
            f"session(s) remaining. Book your sessions before then!</p>"
        )

    @staticmethod
    def send_low_sessions_reminder(client_package):
        client = client_package.client
        return EmailService.send(
            client.email,
            f"Only {client_package.sessions_remaining} session(s) left on your package",
            f"<p>Hi {client.first_name},</p>"
            f"<p>You have {client_package.sessions_remaining} of "
            f"{client_package.package.sessions_included} sessions left on your "
            f"<strong>{client_package.package.name}</strong> package. "
            f"Talk to your trainer about renewing.</p>"
        )


def _log_unexpected_failure(future):
    error = future.exception()
    if error is not None:
        logger.error(f"Email worker crashed: {error}")
