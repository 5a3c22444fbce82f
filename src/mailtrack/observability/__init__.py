"""Metrics, Sentry bridge, and HTTP middleware."""
