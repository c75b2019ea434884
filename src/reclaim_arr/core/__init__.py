"""Reconciliation, matching and deletion services."""
