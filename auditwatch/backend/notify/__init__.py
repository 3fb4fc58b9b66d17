"""
notify/__init__.py

Public API for the notify sub-package.
"""

from .dispatch_queue import DispatchQueue
from .failed_login import FailedLoginMonitor
from .renderer import TemplateRenderer
from .senders import LoggingSender, WebhookSender, build_sender
from .severity import SeverityTable

__all__ = [
    "DispatchQueue",
    "FailedLoginMonitor",
    "TemplateRenderer",
    "LoggingSender",
    "WebhookSender",
    "build_sender",
    "SeverityTable",
]
