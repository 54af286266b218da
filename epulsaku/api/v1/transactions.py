"""Transaction ledger endpoints: list, read, purchase, manual update, delete and recheck"""

import logging
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from epulsaku.api.dependencies import (
    get_ledger,
    get_purchase_service,
    get_request_id,
    get_supervisor,
)
from epulsaku.api.v1.schemas import (
    NewTransactionRequest,
    OperationResponse,
    PurchaseRequestBody,
    PurchaseResponse,
    RecheckResponse,
    TransactionResponse,
    TransactionUpdateRequest,
)
from epulsaku.domain.exceptions import NotFoundError, PersistenceError
from epulsaku.domain.models import NewTransaction, Transaction, TransactionUpdate
from epulsaku.services.ledger import TransactionLedger
from epulsaku.services.purchases import PurchaseRequest, PurchaseService
from epulsaku.services.reconciliation import MANUAL_UPDATE, ReconciliationSupervisor, TickOutcome

router = APIRouter()


def to_response(tx: Transaction) -> TransactionResponse:
    return TransactionResponse(**asdict(tx))


def _require(ledger: TransactionLedger, tx_id: str) -> Transaction:
    try:
        return ledger.require(tx_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/transactions", response_model=List[TransactionResponse])
def list_transactions(ledger: TransactionLedger = Depends(get_ledger)):
    """All transactions, newest first. Records past the retention window are pruned first."""
    try:
        return [to_response(tx) for tx in ledger.get_all()]
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/transactions/{tx_id}", response_model=TransactionResponse)
def get_transaction(tx_id: str, ledger: TransactionLedger = Depends(get_ledger)):
    return to_response(_require(ledger, tx_id))


@router.post("/transactions", response_model=OperationResponse, status_code=201)
def create_transaction(body: NewTransactionRequest, ledger: TransactionLedger = Depends(get_ledger)):
    """Record a transaction placed outside the purchase flow"""
    fields = body.model_dump(exclude={"transacted_by"})
    result = ledger.create(NewTransaction(**fields), transacted_by=body.transacted_by)
    if not result.success:
        raise HTTPException(status_code=500, detail=result.message)
    return OperationResponse(success=True, message=f"Transaction {result.transaction_id} recorded.")


@router.post("/transactions/purchase", response_model=PurchaseResponse)
async def purchase(
    body: PurchaseRequestBody,
    request: Request,
    service: PurchaseService = Depends(get_purchase_service),
):
    """
    Verify the PIN, place the order upstream, record it and alert operators.

    Pending orders are handed to the reconciliation supervisor.
    """
    request_id = get_request_id(request)
    try:
        outcome = await service.purchase(PurchaseRequest(**body.model_dump()))
    except PersistenceError as e:
        logging.error(f"Purchase aborted, store unavailable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Transaction store unavailable")

    if outcome.transaction is None:
        if outcome.account_disabled:
            raise HTTPException(status_code=403, detail=outcome.message)
        raise HTTPException(status_code=400, detail=outcome.message)

    return PurchaseResponse(
        success=outcome.success,
        message=outcome.message,
        transaction=to_response(outcome.transaction),
    )


@router.patch("/transactions/{tx_id}", response_model=TransactionResponse)
def update_transaction(
    tx_id: str,
    body: TransactionUpdateRequest,
    ledger: TransactionLedger = Depends(get_ledger),
):
    _require(ledger, tx_id)
    patch = body.model_dump(exclude={"expected_status"})
    result = ledger.update(TransactionUpdate(id=tx_id, **patch), expected_status=body.expected_status)
    if not result.success:
        raise HTTPException(status_code=409 if body.expected_status else 500, detail=result.message)
    return to_response(_require(ledger, tx_id))


@router.delete("/transactions/{tx_id}", response_model=OperationResponse)
async def delete_transaction(
    tx_id: str,
    ledger: TransactionLedger = Depends(get_ledger),
    supervisor: ReconciliationSupervisor = Depends(get_supervisor),
):
    _require(ledger, tx_id)
    result = ledger.delete(tx_id)
    if not result.success:
        raise HTTPException(status_code=500, detail=result.message)
    supervisor.unwatch(tx_id)
    return OperationResponse(success=True, message=f"Transaction {tx_id} deleted.")


@router.post("/transactions/{tx_id}/recheck", response_model=RecheckResponse)
async def recheck_transaction(
    tx_id: str,
    ledger: TransactionLedger = Depends(get_ledger),
    supervisor: ReconciliationSupervisor = Depends(get_supervisor),
):
    """Query the provider now instead of waiting for the next reconciliation tick"""
    _require(ledger, tx_id)
    outcome = await supervisor.reconcile_once(tx_id, additional_info=MANUAL_UPDATE, source="manual")
    if outcome is TickOutcome.UPSTREAM_ERROR:
        raise HTTPException(status_code=503, detail="Provider status check failed; try again later")
    if outcome is TickOutcome.RESOLVED:
        supervisor.unwatch(tx_id)
    # The update was committed through another session
    ledger.db.expire_all()
    return RecheckResponse(outcome=outcome.value, transaction=to_response(_require(ledger, tx_id)))
