"""
Referral Ledger Engine

A batch ledger engine for a referral-based investment platform that provides:
- Daily benefit accrual on active positions
- Time-delayed referral commission unlocks
- Least-recently-shown rotation of payment wallets
- Per-day idempotency records and distributed job locks
"""

__version__ = "0.1.0"
__author__ = "Referral Ledger Team"
