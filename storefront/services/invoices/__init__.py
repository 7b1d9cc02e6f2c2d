"""Invoicing: aggregation, numbering, reconciliation and live updates."""
