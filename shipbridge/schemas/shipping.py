"""
Shipping schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from shipbridge.models.order import OrderStatus
from shipbridge.modules.shipping.providers.base import PartyAddress


class SenderAddress(BaseModel):
    name: str = Field(..., min_length=1)
    company: Optional[str] = None
    street: str = Field(..., min_length=1)
    street2: Optional[str] = None
    suburb: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postcode: str = Field(..., min_length=1)
    country: str = "NZ"
    phone: Optional[str] = None
    email: Optional[str] = None

    def to_party(self) -> PartyAddress:
        return PartyAddress(**self.model_dump())


class QuoteRequest(BaseModel):
    order_id: str
    pickup_postcode: Optional[str] = None


class ShipRequest(BaseModel):
    order_id: str
    quotation_id: str
    sender_address: SenderAddress


# ==================== Responses ====================

class QuotationResponse(BaseModel):
    id: str
    provider_id: int
    provider_name: str
    service_type: Optional[str]
    base_price: Decimal
    rural_surcharge: Decimal
    gst: Decimal
    total_price: Decimal
    estimated_days: Optional[int]
    is_selected: bool
    expires_at: datetime
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class QuoteResponse(BaseModel):
    is_rural: bool
    quotations: List[QuotationResponse]
    provider_failures: Dict[str, str] = {}


class ShipmentResponse(BaseModel):
    id: str
    order_id: str
    provider_id: int
    provider_name: str
    tracking_number: Optional[str]
    tracking_url: Optional[str]
    consignment_number: Optional[str]
    final_price: Decimal
    label_url: Optional[str]
    label_file_name: Optional[str]
    label_downloaded: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class ShipResponse(BaseModel):
    success: bool = True
    shipment: ShipmentResponse


class ShipConflictResponse(BaseModel):
    error: str = "Shipment already exists for this order"
    shipment: ShipmentResponse


class ErrorLogResponse(BaseModel):
    id: int
    action: str
    message: str
    details: Optional[Dict[str, Any]]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderSummary(BaseModel):
    id: str
    external_id: str
    order_number: str
    customer_name: str
    customer_email: Optional[str]
    customer_phone: Optional[str]
    delivery_street: Optional[str]
    delivery_street2: Optional[str]
    delivery_suburb: Optional[str]
    delivery_city: Optional[str]
    delivery_postcode: Optional[str]
    delivery_country: str
    is_rural: bool
    items: List[Dict[str, Any]]
    status: OrderStatus
    synced_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    validation_errors: List[str] = []

    class Config:
        from_attributes = True


class OrderDetailResponse(OrderSummary):
    quotations: List[QuotationResponse] = []
    shipment: Optional[ShipmentResponse] = None
    error_logs: List[ErrorLogResponse] = []


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int


class OrderListResponse(BaseModel):
    orders: List[OrderSummary]
    pagination: Pagination


class ShipmentOrderSummary(BaseModel):
    id: str
    order_number: str
    customer_name: str
    delivery_city: Optional[str]
    delivery_postcode: Optional[str]

    class Config:
        from_attributes = True


class ShipmentListItem(ShipmentResponse):
    order: ShipmentOrderSummary


class ShipmentList(BaseModel):
    shipments: List[ShipmentListItem]
