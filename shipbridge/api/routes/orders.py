"""
Order routes

Listing syncs each order from the warehouse source when it is configured;
the detail view re-syncs orders that are still awaiting data.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from shipbridge.api.deps import get_lifecycle_controller, require_api_token
from shipbridge.schemas.shipping import (
    ErrorLogResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderSummary,
    Pagination,
    QuotationResponse,
    ShipmentResponse,
)
from shipbridge.services.order_lifecycle import OrderLifecycleController
from shipbridge.services.validation import validate_for_shipping

router = APIRouter(dependencies=[Depends(require_api_token)])

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20

STATUS_FILTER_PATTERN = "^(all|PENDING_DATA|READY_TO_QUOTE|QUOTED|LABEL_CREATED|ERROR)$"


def order_summary(order) -> OrderSummary:
    summary = OrderSummary.model_validate(order)
    summary.validation_errors = validate_for_shipping(order.delivery_address, order.items).missing_fields
    return summary


@router.get("", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    status: Optional[str] = Query(None, pattern=STATUS_FILTER_PATTERN),
    search: Optional[str] = Query(None, max_length=100),
    controller: OrderLifecycleController = Depends(get_lifecycle_controller),
):
    result = await controller.list_orders(status=status, search=search, page=page, per_page=per_page)
    return OrderListResponse(
        orders=[order_summary(order) for order in result.orders],
        pagination=Pagination(
            page=result.page,
            per_page=result.per_page,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: str,
    controller: OrderLifecycleController = Depends(get_lifecycle_controller),
):
    """Get one order by local id or warehouse id, with quotes, shipment and recent errors."""
    view = await controller.sync_and_get_order(order_id)
    summary = OrderSummary.model_validate(view.order)
    return OrderDetailResponse(
        **summary.model_dump(exclude={"validation_errors"}),
        validation_errors=view.validation_errors,
        quotations=[QuotationResponse.model_validate(q) for q in view.quotations],
        shipment=ShipmentResponse.model_validate(view.shipment) if view.shipment else None,
        error_logs=[ErrorLogResponse.model_validate(e) for e in view.recent_errors],
    )
