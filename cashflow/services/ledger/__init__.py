"""
Upload Ledger Package

Durable record of every issued upload credential.
"""

from cashflow.services.ledger.interface import UploadLedgerInterface
from cashflow.services.ledger.sql import SqlUploadLedger, UploadRequestRow

__all__ = [
    "SqlUploadLedger",
    "UploadLedgerInterface",
    "UploadRequestRow",
]
