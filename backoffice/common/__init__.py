"""Shared helpers for the back office packages."""
