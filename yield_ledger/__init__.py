"""
Yield Ledger

Balance accrual and settlement engine for deposit-based investment plans:
business-time profit accrual, lazy maturity, and atomic administrator
settlement of withdrawal and deposit requests with referral commission.
"""

__version__ = "1.0.0"
