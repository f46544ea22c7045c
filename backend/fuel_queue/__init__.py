"""Fuel queue notifier: queue-state reconciliation and driver notification service."""
