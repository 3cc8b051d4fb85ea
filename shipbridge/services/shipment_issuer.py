"""
Shipment Issuer

Books a shipment with the provider behind a chosen quotation.

Preconditions, checked before any network call:
1. No shipment exists for the order (otherwise the existing one is
   returned as a conflict outcome)
2. The quotation belongs to the order's current batch
3. The quotation has not expired

On success the Shipment row is added and the quotation marked selected
in the caller's transaction; committing is left to the caller.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shipbridge.core.exceptions import (
    ProviderError,
    QuotationExpiredError,
    QuotationNotFoundError,
    ShipmentCreationError,
    OrderNotShippableError,
)
from shipbridge.models.order import Order
from shipbridge.models.quotation import Quotation
from shipbridge.models.shipment import Shipment, label_file_name
from shipbridge.modules.shipping.providers import ProviderFactory
from shipbridge.modules.shipping.providers.base import PartyAddress, ShipmentResult
from shipbridge.services.courier_client import CourierClient
from shipbridge.services.label_store import LabelStore
from shipbridge.services.quote_aggregator import parcels_for
from shipbridge.services.validation import validate_shipment_request

logger = logging.getLogger(__name__)


@dataclass
class ShipOutcome:
    """Shipment for an order; `conflict` when it already existed."""
    shipment: Shipment
    conflict: bool = False


def recipient_for(order: Order) -> PartyAddress:
    return PartyAddress(
        name=order.customer_name,
        street=order.delivery_street or "",
        suburb=order.delivery_suburb or "",
        city=order.delivery_city or "",
        postcode=order.delivery_postcode or "",
        country=order.delivery_country,
        street2=order.delivery_street2 or None,
        phone=order.customer_phone or None,
        email=order.customer_email or None,
    )


def shipment_reference(order: Order) -> str:
    """Order number shown on the label; the source id when the source gave none."""
    return order.order_number or order.external_id


class ShipmentIssuer:

    def __init__(self, courier: CourierClient, label_store: LabelStore):
        self.courier = courier
        self.label_store = label_store

    async def existing_shipment(self, db: AsyncSession, order_id: str) -> Optional[Shipment]:
        result = await db.execute(select(Shipment).where(Shipment.order_id == order_id))
        return result.scalar_one_or_none()

    async def current_quotation(self, db: AsyncSession, order: Order, quotation_id: str) -> Quotation:
        result = await db.execute(
            select(Quotation).where(
                Quotation.id == quotation_id,
                Quotation.order_id == order.id,
            )
        )
        quotation = result.scalar_one_or_none()
        if not quotation:
            raise QuotationNotFoundError(
                "Quotation not found",
                details={"order_id": order.id, "quotation_id": quotation_id},
            )
        return quotation

    async def _book(self, order: Order, quotation: Quotation, sender: PartyAddress) -> ShipmentResult:
        provider = ProviderFactory.get(quotation.provider_id)
        if not provider:
            raise ShipmentCreationError(
                f"No provider registered for id {quotation.provider_id}",
                details={"provider_id": quotation.provider_id},
            )

        recipient = recipient_for(order)
        parcels = parcels_for(order.items)
        reference = shipment_reference(order)
        check = validate_shipment_request(
            sender.to_payload(), recipient.to_payload(), parcels, reference=reference
        )
        if not check.is_valid:
            raise OrderNotShippableError("Shipment request is incomplete", missing_fields=check.missing_fields)

        payload = provider.build_shipment_request(
            reference=reference,
            sender=sender,
            recipient=recipient,
            items=parcels,
            service_type=quotation.service_type,
        )

        try:
            data = await self.courier.send_parcel(payload)
        except ProviderError as e:
            raise ShipmentCreationError(
                e.message,
                details={"provider_id": quotation.provider_id, "status_code": e.status_code},
            )

        result = provider.normalize_shipment(data)
        if not result.success:
            raise ShipmentCreationError(
                result.error_message or "Failed to create shipment",
                details=result.provider_response,
            )
        return result

    async def create_shipment(
        self,
        db: AsyncSession,
        order: Order,
        quotation_id: str,
        sender: PartyAddress,
        now: datetime,
    ) -> ShipOutcome:
        """
        Create the order's shipment from one of its current quotations.

        Raises:
            QuotationNotFoundError: Quotation is not in the order's current batch
            QuotationExpiredError: Quotation is past its expiry
            OrderNotShippableError: Sender/recipient/items incomplete
            ShipmentCreationError: Provider rejected or could not be reached
        """
        existing = await self.existing_shipment(db, order.id)
        if existing:
            return ShipOutcome(shipment=existing, conflict=True)

        quotation = await self.current_quotation(db, order, quotation_id)
        if quotation.is_expired(now):
            raise QuotationExpiredError(
                "Quotation has expired, please re-quote",
                details={"quotation_id": quotation.id, "expires_at": quotation.expires_at.isoformat()},
            )

        logger.info(f"Booking order {order.id} with {quotation.provider_name}")
        result = await self._book(order, quotation, sender)

        label = await self.label_store.try_download(result.consignment_number, quotation.provider_id)

        shipment = Shipment(
            order_id=order.id,
            provider_id=quotation.provider_id,
            provider_name=quotation.provider_name,
            tracking_number=result.tracking_number,
            tracking_url=result.tracking_url,
            consignment_number=result.consignment_number,
            final_price=quotation.total_price,
            label_url=result.label_url,
            label_data=label,
            label_file_name=label_file_name(result.consignment_number) if result.consignment_number else None,
            label_downloaded=label is not None,
            provider_response=result.provider_response,
        )
        db.add(shipment)
        quotation.is_selected = True
        order_id = order.id

        try:
            await db.flush()
        except IntegrityError:
            # Another process booked this order first; rollback expires `order`
            await db.rollback()
            logger.error(
                f"Order {order_id} already has a shipment; "
                f"consignment {result.consignment_number} was not recorded"
            )
            existing = await self.existing_shipment(db, order_id)
            if not existing:
                raise
            return ShipOutcome(shipment=existing, conflict=True)

        logger.info(f"Shipment {shipment.id} created for order {order.id} ({result.consignment_number})")
        return ShipOutcome(shipment=shipment)
