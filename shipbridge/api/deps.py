"""
API dependencies

Callers authenticate with a static bearer token; the engine is assembled
per request around the request's database session and the process-wide
HTTP clients held on app.state.
"""
import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from shipbridge.core.config import settings
from shipbridge.core.database import get_db
from shipbridge.services.courier_client import CourierClient, ProviderQuoteClient
from shipbridge.services.label_store import LabelStore
from shipbridge.services.order_lifecycle import OrderLifecycleController
from shipbridge.services.quote_aggregator import QuoteAggregator
from shipbridge.services.shipment_issuer import ShipmentIssuer
from shipbridge.services.warehouse_client import WarehouseClient

# Optional bearer - missing header is reported as 401 below, not 403
security = HTTPBearer(auto_error=False)


async def require_api_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Reject requests without the configured bearer token."""
    token = credentials.credentials if credentials else ""
    if not token or not hmac.compare_digest(token.encode(), settings.API_TOKEN.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def get_courier(request: Request) -> CourierClient:
    return request.app.state.courier


def get_warehouse(request: Request) -> Optional[WarehouseClient]:
    return getattr(request.app.state, "warehouse", None)


def get_lifecycle_controller(
    db: AsyncSession = Depends(get_db),
    courier: CourierClient = Depends(get_courier),
    warehouse: Optional[WarehouseClient] = Depends(get_warehouse),
) -> OrderLifecycleController:
    label_store = LabelStore(courier)
    return OrderLifecycleController(
        db=db,
        warehouse=warehouse,
        aggregator=QuoteAggregator(ProviderQuoteClient(courier), courier),
        issuer=ShipmentIssuer(courier, label_store),
        label_store=label_store,
    )
