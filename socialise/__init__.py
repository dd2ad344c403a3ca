"""Socialise: multi-tenant social media scheduling and publish queue."""

__version__ = "1.0.0"
