"""Shared helpers for the sync engine."""
