"""GuestDesk: guest messaging, escalations and analytics API."""

__version__ = "1.0.0"
