"""
Cashflow - Source Package

A personal finance ledger: spending and earning transactions, optional
receipt photos uploaded straight to object storage, monthly summaries.

DESIGN PRINCIPLES:
1. The ledger is never proof that bytes exist - the store is checked
2. An upload is consumed by at most one transaction
3. Staged objects are duplicated before they are removed, never lost
4. Best-effort cleanup never blocks the primary outcome
5. Storage backends are swappable behind interfaces
"""

__version__ = "1.0.0"
__author__ = "Cashflow Team"
