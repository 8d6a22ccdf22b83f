"""Shared helpers used across the sync engine."""
