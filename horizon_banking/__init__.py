"""
Horizon Banking Dashboard

Server-side banking dashboard with fiat and crypto balances, an append-only
transaction ledger, recurring transfers, statements and an admin console.
"""

__version__ = "1.0.0"
