"""Watchpost - uptime and domain expiry monitoring."""
