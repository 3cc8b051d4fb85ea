"""
Warehouse order source client

Implements OAuth 2.0 client-credentials authentication and the order APIs:
- List orders (paginated, filtered)
- Get a single order
- Push tracking details back onto an order

Per-tenant routing uses the X-Tenant-UUID header on every call.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shipbridge.core.config import settings
from shipbridge.core.exceptions import WarehouseError
from shipbridge.core.http_client import ResilientHTTPClient, CircuitOpenError
from shipbridge.core.token_cache import IssuedToken, TokenCache

logger = logging.getLogger(__name__)

# OAuth endpoint
OAUTH_TOKEN_PATH = "/oauth/token"

# API endpoints
ORDERS_PATH = "/api/v1/orders"


# =============================================================================
# Order record models
# =============================================================================

class WarehouseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WarehouseItem(WarehouseModel):
    id: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[float] = None
    weight: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    sku: Optional[str] = None

    @field_validator("quantity", "weight", "length", "width", "height")
    @classmethod
    def drop_non_finite(cls, v: Optional[float]) -> Optional[float]:
        """NaN/inf measurements are treated as missing."""
        if v is not None and not math.isfinite(v):
            return None
        return v


class WarehouseAddress(WarehouseModel):
    street: Optional[str] = None
    street2: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None


class WarehouseCustomer(WarehouseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class WarehouseOrder(WarehouseModel):
    id: str
    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    reference: Optional[str] = None
    customer: Optional[WarehouseCustomer] = None
    delivery_address: Optional[WarehouseAddress] = Field(default=None, alias="deliveryAddress")
    items: Optional[List[WarehouseItem]] = None
    status: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @property
    def display_number(self) -> str:
        return self.order_number or self.reference or ""

    @classmethod
    def minimal(cls, raw: Dict[str, Any]) -> "WarehouseOrder":
        """Fallback for records that do not match the expected shape."""
        customer = raw.get("customer")
        name = customer.get("name") if isinstance(customer, dict) else None
        return cls(
            id=str(raw.get("id") or ""),
            order_number=str(raw.get("orderNumber") or raw.get("reference") or ""),
            customer=WarehouseCustomer(name=str(name or "")),
        )

    def items_list(self) -> List[Dict[str, Any]]:
        return [item.model_dump(exclude_none=True) for item in (self.items or [])]


@dataclass
class WarehouseOrderPage:
    orders: List[WarehouseOrder] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 20


# =============================================================================
# Client
# =============================================================================

class WarehouseClient:
    """
    Async client for the warehouse order source.

    The bearer token is held in a TokenCache and refreshed before expiry;
    a 401 from an API call drops the token and retries the call once.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        tenant_uuid: Optional[str] = None,
        customer_uuid: Optional[str] = None,
        token_cache: Optional[TokenCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.WAREHOUSE_BASE_URL).rstrip("/")
        self.client_id = client_id or settings.WAREHOUSE_CLIENT_ID
        self.client_secret = client_secret or settings.WAREHOUSE_CLIENT_SECRET
        self.tenant_uuid = tenant_uuid or settings.WAREHOUSE_TENANT_UUID
        self.customer_uuid = customer_uuid if customer_uuid is not None else settings.WAREHOUSE_CUSTOMER_UUID
        self.token_cache = token_cache or TokenCache(
            refresh_margin_seconds=settings.WAREHOUSE_TOKEN_REFRESH_MARGIN_SECONDS
        )
        self._http = ResilientHTTPClient(
            timeout=settings.WAREHOUSE_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.client_id and self.client_secret)

    async def close(self):
        await self._http.close()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except CircuitOpenError as e:
            raise WarehouseError(str(e), code="WAREHOUSE_UNAVAILABLE")
        except httpx.RequestError as e:
            logger.error(f"Warehouse {method} {url} failed: {e}")
            raise WarehouseError(f"Network error: {e}", code="WAREHOUSE_NETWORK_ERROR")

    async def _fetch_token(self) -> IssuedToken:
        """Client-credentials exchange for a new access token."""
        response = await self._send(
            "POST",
            f"{self.base_url}{OAUTH_TOKEN_PATH}",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        if not response.is_success:
            body = response.text[:500]
            logger.error(f"Warehouse token request failed: {response.status_code} - {body}")
            raise WarehouseError(
                f"Failed to get warehouse access token: {body}",
                code="WAREHOUSE_AUTH_FAILED",
                details={"status_code": response.status_code},
            )
        data = response.json()
        return IssuedToken(access_token=data["access_token"], expires_in=int(data.get("expires_in", 3600)))

    async def _make_request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make authenticated API request."""
        url = f"{self.base_url}{path}"

        for attempt in range(2):
            token = await self.token_cache.get_token(self._fetch_token)
            headers = {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "X-Tenant-UUID": self.tenant_uuid,
            }
            response = await self._send(method, url, headers=headers, json=json, params=params)

            if response.status_code == 401 and attempt == 0:
                logger.info("Warehouse rejected access token, refreshing")
                self.token_cache.invalidate()
                continue
            break

        if not response.is_success:
            body = response.text[:500]
            logger.error(f"Warehouse API {method} {path} -> {response.status_code}: {body}")
            raise WarehouseError(
                f"Warehouse API error: {response.status_code} - {body}",
                details={"status_code": response.status_code},
            )

        logger.debug(f"Warehouse API {method} {path} -> {response.status_code}")
        try:
            return response.json()
        except ValueError:
            raise WarehouseError("Warehouse returned non-JSON body", code="WAREHOUSE_PARSE_ERROR")

    def _parse_order(self, raw: Any) -> WarehouseOrder:
        try:
            return WarehouseOrder.model_validate(raw)
        except ValidationError:
            if not isinstance(raw, dict):
                raise WarehouseError("Unrecognised warehouse order record", code="WAREHOUSE_PARSE_ERROR")
            logger.warning(f"Warehouse order {raw.get('id')} did not parse, using minimal record")
            return WarehouseOrder.minimal(raw)

    async def list_orders(
        self,
        page: int = 1,
        per_page: int = 20,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> WarehouseOrderPage:
        params: Dict[str, Any] = {"page": page, "per_page": per_page}
        if status:
            params["status"] = status
        if search:
            params["search"] = search
        if self.customer_uuid:
            params["customer_uuid"] = self.customer_uuid

        data = await self._make_request("GET", ORDERS_PATH, params=params)
        orders = [self._parse_order(raw) for raw in data.get("data") or []]
        meta = data.get("meta") or {}

        return WarehouseOrderPage(
            orders=orders,
            total=meta.get("total") or len(orders),
            page=meta.get("current_page") or page,
            per_page=meta.get("per_page") or per_page,
        )

    async def get_order(self, order_id: str) -> WarehouseOrder:
        data = await self._make_request("GET", f"{ORDERS_PATH}/{order_id}")
        try:
            return WarehouseOrder.model_validate(data.get("data"))
        except ValidationError as e:
            raise WarehouseError(
                f"Warehouse order {order_id} is malformed",
                code="WAREHOUSE_PARSE_ERROR",
                details={"errors": e.errors(include_url=False, include_context=False)},
            )

    async def update_order(
        self,
        order_id: str,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[WarehouseOrder]:
        """Push tracking details onto the source order."""
        payload = {
            "trackingNumber": tracking_number,
            "trackingUrl": tracking_url,
            "status": status,
        }
        data = await self._make_request(
            "PATCH",
            f"{ORDERS_PATH}/{order_id}",
            json={k: v for k, v in payload.items() if v is not None},
        )
        raw = data.get("data")
        return self._parse_order(raw) if raw else None
