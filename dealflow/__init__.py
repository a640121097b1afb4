"""Dealflow: pipeline stages, leads, deal-close approvals and real-time notifications."""

__version__ = "1.0.0"
