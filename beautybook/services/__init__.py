"""Booking engine components used by the HTTP blueprint and CLI."""
