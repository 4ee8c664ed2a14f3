"""
HTTP routes.

Handlers are thin: they pull the services off app.state, call one service
method, and return its pydantic model. Errors propagate as CashflowError and
are rendered by the handlers registered in cashflow.api.app.
"""

from uuid import UUID

from fastapi import APIRouter, Query, Request, Response

from cashflow.models import (
    CreateTransactionRequest,
    MonthlyAggregate,
    Transaction,
    TransactionPage,
    UploadCredential,
    UploadCredentialRequest,
    UploadStatusView,
)
from cashflow.transactions import TransactionService
from cashflow.uploads import UploadCoordinator


router = APIRouter(prefix="/api")


def _coordinator(request: Request) -> UploadCoordinator:
    return request.app.state.components.coordinator


def _transactions(request: Request) -> TransactionService:
    return request.app.state.components.transactions


# ----------------------------------------------------
# Uploads
# ----------------------------------------------------
@router.post("/uploads/request", response_model=UploadCredential)
async def request_upload(body: UploadCredentialRequest, request: Request) -> UploadCredential:
    return await _coordinator(request).request_credential(body.content_type, body.file_size)


@router.get("/uploads/{upload_id}/status", response_model=UploadStatusView)
async def upload_status(upload_id: str, request: Request) -> UploadStatusView:
    return await _coordinator(request).get_status(upload_id)


# ----------------------------------------------------
# Transactions
# ----------------------------------------------------
@router.post("/transactions", response_model=Transaction, status_code=201)
async def create_transaction(body: CreateTransactionRequest, request: Request) -> Transaction:
    return await _transactions(request).create_transaction(body)


@router.get("/transactions", response_model=TransactionPage)
async def list_transactions(
    request: Request,
    limit: int = Query(default=20),
    offset: int = Query(default=0),
) -> TransactionPage:
    return await _transactions(request).list_transactions(limit=limit, offset=offset)


@router.get("/transactions/aggregate", response_model=MonthlyAggregate)
async def monthly_aggregate(request: Request, month: str = Query(...)) -> MonthlyAggregate:
    return await _transactions(request).get_monthly_aggregate(month)


@router.delete("/transactions/{transaction_id}", status_code=204)
async def delete_transaction(transaction_id: UUID, request: Request) -> Response:
    await _transactions(request).delete_transaction(transaction_id)
    return Response(status_code=204)
