"""
Out-of-band notifications.
"""

from src.kernel.notifications.email import EmailNotifier, Notifier, redact_email

__all__ = [
    "EmailNotifier",
    "Notifier",
    "redact_email",
]
