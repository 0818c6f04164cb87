"""M-Pesa STK push gateway client and callback reconciliation ledger."""

__version__ = "0.1.0"
