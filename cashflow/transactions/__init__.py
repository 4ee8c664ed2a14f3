"""Financial record service: transactions and monthly summaries."""

from cashflow.transactions.repository import (
    SqlTransactionRepository,
    TransactionRepositoryInterface,
    TransactionRow,
)
from cashflow.transactions.service import (
    TransactionService,
    decode_base64_image,
    parse_month,
)

__all__ = [
    "SqlTransactionRepository",
    "TransactionRepositoryInterface",
    "TransactionRow",
    "TransactionService",
    "decode_base64_image",
    "parse_month",
]
