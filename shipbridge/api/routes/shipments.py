"""
Shipment routes
"""
from fastapi import APIRouter, Depends, Query

from shipbridge.api.deps import get_lifecycle_controller, require_api_token
from shipbridge.schemas.shipping import ShipmentList, ShipmentListItem
from shipbridge.services.order_lifecycle import OrderLifecycleController

router = APIRouter(dependencies=[Depends(require_api_token)])


@router.get("", response_model=ShipmentList)
async def list_shipments(
    limit: int = Query(100, ge=1, le=500),
    controller: OrderLifecycleController = Depends(get_lifecycle_controller),
):
    """All shipments, newest first, with a summary of their order."""
    shipments = await controller.list_shipments(limit=limit)
    return ShipmentList(shipments=[ShipmentListItem.model_validate(s) for s in shipments])
