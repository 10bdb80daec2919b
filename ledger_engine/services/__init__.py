"""
Ledger services: job locking, daily processing ledger, accrual,
commission unlocks and wallet rotation.
"""
