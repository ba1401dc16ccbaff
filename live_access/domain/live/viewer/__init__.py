"""Viewer accounting module."""

from .viewer_accountant import ViewerAccountant
from .viewer_models import LiveSessionStore, ViewerCounterStore, ViewerSession, channel_for_live

__all__ = [
    "LiveSessionStore",
    "ViewerAccountant",
    "ViewerCounterStore",
    "ViewerSession",
    "channel_for_live",
]
