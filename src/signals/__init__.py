from src.signals.email import EmailNotifier, format_alert_email

__all__ = [
    "EmailNotifier",
    "format_alert_email",
]
