"""
Thin HTTP surface over the ledger engine: manual triggers, run status and
wallet allocation.
"""
