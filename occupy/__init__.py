"""Issue-occupying contest core: atomic claims, quota, expiry and client reconciliation."""

__version__ = "0.1.0"
