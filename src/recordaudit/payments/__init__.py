"""Checkout and payment reconciliation."""
