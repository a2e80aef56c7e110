"""Universal transaction lookup."""

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from core.errors import TransactionNotFoundError

from bridge import records


router = APIRouter()


@router.get("/{organization_id}/{transaction_number}")
async def get_transaction(organization_id: str, transaction_number: str, request: Request) -> Dict[str, Any]:
    """Transaction details plus stored classification provenance."""
    adapter = request.app.state.registry.adapter
    try:
        transaction = await records.find_transaction(adapter, organization_id, transaction_number)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")

    return {
        "transaction": transaction.model_dump(mode="json"),
        "classification": await records.load_classification(adapter, transaction.id),
    }
