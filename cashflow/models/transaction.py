"""
Transaction Models

A transaction is a single spending or earning entry in the ledger,
optionally carrying a receipt image stored under the permanent prefix.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class TransactionType(str, Enum):
    """Direction of money flow."""
    SPENDING = "spending"
    EARNING = "earning"


class Transaction(BaseModel):
    """A persisted ledger entry."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    date: date
    amount: Annotated[
        Decimal,
        Field(gt=0, decimal_places=2, description="Amount, always positive")
    ]
    type: TransactionType
    description: str = Field(default="", max_length=1000)

    # Receipt image
    image_key: Optional[str] = Field(
        default=None,
        description="Object key of the receipt under the permanent prefix"
    )
    upload_id: Optional[str] = Field(
        default=None,
        description="Upload this receipt was promoted from"
    )
    image_url: Optional[str] = Field(
        default=None,
        description="Presigned GET URL, generated per response, never stored"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class CreateTransactionRequest(BaseModel):
    """
    Request to record a transaction.

    Amount, type and date are checked by the service rather than here so the
    caller gets the ledger's own error messages.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: str = Field(..., description="YYYY-MM-DD")
    amount: Decimal
    type: str
    description: str = Field(default="", max_length=1000)
    upload_id: Optional[str] = Field(
        default=None,
        description="Upload id returned by a credential request"
    )
    image_base64: Optional[str] = Field(
        default=None,
        description="Deprecated inline image (data URL or bare base64)"
    )


class TransactionPage(BaseModel):
    """One page of transactions, newest first."""

    transactions: list[Transaction]
    total: int = Field(ge=0)
    limit: int
    offset: int


class MonthlyAggregate(BaseModel):
    """Income and spending totals for one calendar month."""

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    income: Decimal = Decimal("0")
    spending: Decimal = Decimal("0")
    net_total: Decimal = Decimal("0")
    transaction_count: int = 0
