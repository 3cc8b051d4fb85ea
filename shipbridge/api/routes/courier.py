"""
Courier routes

Quote an order, book the shipment from a chosen quotation, and download
the shipment label.
"""
import logging

from fastapi import APIRouter, Depends, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from shipbridge.api.deps import get_lifecycle_controller, require_api_token
from shipbridge.schemas.shipping import (
    QuotationResponse,
    QuoteRequest,
    QuoteResponse,
    ShipConflictResponse,
    ShipmentResponse,
    ShipRequest,
    ShipResponse,
)
from shipbridge.services.order_lifecycle import OrderLifecycleController

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_token)])


@router.post("/quote", response_model=QuoteResponse)
async def request_quote(
    body: QuoteRequest,
    controller: OrderLifecycleController = Depends(get_lifecycle_controller),
):
    """Quote every provider for the order, replacing any earlier quotations."""
    batch = await controller.request_quotes(body.order_id, body.pickup_postcode)
    return QuoteResponse(
        is_rural=batch.is_rural,
        quotations=[QuotationResponse.model_validate(q) for q in batch.quotations],
        provider_failures={str(k): v for k, v in batch.failures.items()},
    )


@router.post(
    "/ship",
    response_model=ShipResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ShipConflictResponse}},
)
async def create_shipment(
    body: ShipRequest,
    controller: OrderLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Book the shipment for an order.

    Returns 409 with the existing shipment when the order was already shipped.
    """
    outcome = await controller.select_quote_and_ship(
        body.order_id, body.quotation_id, body.sender_address.to_party()
    )
    shipment = ShipmentResponse.model_validate(outcome.shipment)

    if outcome.conflict:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=jsonable_encoder(ShipConflictResponse(shipment=shipment)),
        )
    return ShipResponse(shipment=shipment)


@router.get("/label/{shipment_id}")
async def download_label(
    shipment_id: str,
    controller: OrderLifecycleController = Depends(get_lifecycle_controller),
):
    document = await controller.get_label(shipment_id)
    return Response(
        content=document.content,
        media_type=document.media_type,
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )
