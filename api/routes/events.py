"""POS event intake endpoints.

Each route hands the payload to the publisher bound to the payload's
organization. Failed accounting results are returned with status 422.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response

from core.models.canonical import Order, OrderVoided, PaymentReceived, RefundProcessed
from core.models.ledger import AccountingResult


router = APIRouter()


def _publisher(request: Request, organization_id: str):
    return request.app.state.registry.get(organization_id)


def _respond(result: AccountingResult, response: Response) -> AccountingResult:
    response.status_code = 200 if result.success else 422
    return result


@router.post("/orders/completed", response_model=AccountingResult)
async def order_completed(order: Order, request: Request, response: Response) -> AccountingResult:
    """Record a completed order."""
    publisher = _publisher(request, order.organization_id)
    return _respond(await publisher.publish_order_completed(order), response)


@router.post("/payments/received", response_model=AccountingResult)
async def payment_received(payment: PaymentReceived, request: Request, response: Response) -> AccountingResult:
    """Confirm payment for a recorded order."""
    publisher = _publisher(request, payment.organization_id)
    return _respond(await publisher.publish_payment_received(payment), response)


@router.post("/refunds/processed", response_model=AccountingResult)
async def refund_processed(refund: RefundProcessed, request: Request, response: Response) -> AccountingResult:
    """Record a refund."""
    publisher = _publisher(request, refund.organization_id)
    return _respond(await publisher.publish_refund_processed(refund), response)


@router.post("/orders/voided", response_model=AccountingResult)
async def order_voided(void: OrderVoided, request: Request, response: Response) -> AccountingResult:
    """Void a recorded order."""
    publisher = _publisher(request, void.organization_id)
    return _respond(await publisher.publish_order_voided(void), response)


@router.get("/stats")
async def event_stats(
    request: Request,
    organization_id: Optional[str] = Query(None, description="Limit to one organization"),
) -> Dict[str, Any]:
    """Publisher statistics, per organization."""
    registry = request.app.state.registry
    if organization_id is None:
        return {"organizations": registry.stats()}

    publisher = registry.find(organization_id)
    if publisher is None:
        raise HTTPException(status_code=404, detail="No events published for this organization")
    return publisher.get_stats()
