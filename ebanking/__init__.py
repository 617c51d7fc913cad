"""
eBanking Ledger Core

Customers, current and savings accounts, and the credit/debit/transfer
operations that move their balances, with a paginated operation history.
"""

__version__ = "1.0.0"
