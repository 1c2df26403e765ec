"""Shared helpers used across routes, services and repositories."""
