"""
Loan Ledger

Personal-loan bookkeeping service: users, the loans they extend to borrowers,
and repayment transactions, with a ledger engine that keeps each loan's status
consistent with the sum of its repayments.
"""

__version__ = "1.0.0"
