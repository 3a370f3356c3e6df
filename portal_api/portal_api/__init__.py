"""Clinic portal HTTP API: subscription webhooks, entitlement and operator tools."""

__version__ = "0.4.0"
