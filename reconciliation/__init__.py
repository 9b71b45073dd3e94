"""Ledger / trial-balance reconciliation and cash-flow derivation."""
