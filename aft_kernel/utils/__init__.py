"""Shared utilities for the AFT kernel."""
