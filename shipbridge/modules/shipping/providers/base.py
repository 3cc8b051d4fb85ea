"""
Base Provider Interface

Every courier provider behind the courier backend implements this
interface. The backend speaks one wire format for all providers, but the
response fields differ per provider, so each adapter owns:
  - Quote request building
  - Quote response normalization
  - Shipment request building
  - Shipment response normalization
  - Tracking URL
"""
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from shipbridge.core.config import settings
from shipbridge.core.exceptions import ProviderQuoteError

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Parse a provider-reported amount; missing values are zero."""
    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


# =============================================================================
# Provider-Agnostic Data Classes
# =============================================================================

@dataclass
class ParcelItem:
    """One parcel as sent to a provider (weight in kg, dimensions in cm)."""
    weight: float
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    description: Optional[str] = None

    @classmethod
    def from_order_item(cls, item: Dict[str, Any]) -> "ParcelItem":
        """
        Build a parcel from a stored order line item.

        Missing weight falls back to the default; the result is clamped
        into the range providers accept.
        """
        weight = item.get("weight")
        if not weight or not math.isfinite(float(weight)):
            weight = settings.DEFAULT_ITEM_WEIGHT_KG
        weight = min(max(float(weight), settings.MIN_ITEM_WEIGHT_KG), settings.MAX_ITEM_WEIGHT_KG)
        return cls(
            weight=weight,
            length=item.get("length"),
            width=item.get("width"),
            height=item.get("height"),
            description=item.get("description"),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class PartyAddress:
    """Sender or recipient of a shipment."""
    name: str
    street: str
    suburb: str
    city: str
    postcode: str
    country: str = "NZ"
    company: Optional[str] = None
    street2: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class QuoteResult:
    """Normalized quote from one provider."""
    provider_id: int
    provider_name: str
    total_price: Decimal
    service_type: Optional[str] = None
    base_price: Decimal = Decimal("0.00")
    rural_surcharge: Decimal = Decimal("0.00")
    gst: Decimal = Decimal("0.00")
    estimated_days: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ShipmentResult:
    """Normalized result of a shipment-creation call."""
    success: bool
    consignment_number: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    label_url: Optional[str] = None
    error_message: Optional[str] = None
    provider_response: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Base Provider Interface
# =============================================================================

class BaseProvider(ABC):
    """
    Abstract base class for courier providers.

    Subclasses supply identity, base-price extraction and tracking URLs;
    the shared request and response handling lives here.
    """

    def __init__(
        self,
        default_service_type: Optional[str] = None,
        default_signature_required: Optional[bool] = None,
    ):
        self.default_service_type = default_service_type or settings.DEFAULT_SERVICE_TYPE
        self.default_signature_required = (
            settings.DEFAULT_SIGNATURE_REQUIRED
            if default_signature_required is None
            else default_signature_required
        )

    @property
    @abstractmethod
    def provider_id(self) -> int:
        """Return the courier backend's provider id."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the human-readable provider name."""
        pass

    @abstractmethod
    def extract_base_price(self, data: Dict[str, Any]) -> Any:
        """
        Return the raw base price from a quote response.

        Providers report the base under different field names.
        """
        pass

    @abstractmethod
    def get_tracking_url(self, tracking_number: str) -> str:
        """
        Get the public tracking URL for a shipment.

        Args:
            tracking_number: The tracking number

        Returns:
            URL string for public tracking page
        """
        pass

    def build_quote_request(
        self,
        pickup_postcode: str,
        delivery_postcode: str,
        items: List[ParcelItem],
        is_rural: bool = False,
    ) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "pickupPostcode": pickup_postcode,
            "deliveryPostcode": delivery_postcode,
            "items": [item.to_payload() for item in items],
            "isRural": is_rural,
        }

    def normalize_quote(self, data: Dict[str, Any]) -> QuoteResult:
        """
        Convert a quote response into a QuoteResult.

        Raises:
            ProviderQuoteError: Response flagged unsuccessful, or carries no
                usable total price
        """
        if data.get("success") is False:
            raise ProviderQuoteError(
                data.get("error") or f"{self.provider_name} declined to quote",
                provider_id=self.provider_id,
            )

        try:
            total = to_money(data.get("totalPrice"))
            base = to_money(self.extract_base_price(data))
            surcharge = to_money(data.get("ruralSurcharge"))
            gst = to_money(data.get("gst"))
        except (InvalidOperation, TypeError, ValueError):
            raise ProviderQuoteError(
                f"{self.provider_name} returned unparseable prices",
                provider_id=self.provider_id,
                details={"response": data},
            )

        if total <= 0:
            raise ProviderQuoteError(
                f"{self.provider_name} returned no total price",
                provider_id=self.provider_id,
                details={"response": data},
            )

        # Provider totals are kept as reported
        if base + surcharge + gst != total:
            logger.warning(
                f"{self.provider_name} total {total} does not match "
                f"base {base} + surcharge {surcharge} + gst {gst}"
            )

        estimated_days = data.get("estimatedDays")
        return QuoteResult(
            provider_id=self.provider_id,
            provider_name=self.provider_name,
            service_type=data.get("serviceType") or self.default_service_type,
            base_price=base,
            rural_surcharge=surcharge,
            gst=gst,
            total_price=total,
            estimated_days=int(estimated_days) if estimated_days is not None else None,
            raw=data,
        )

    def build_shipment_request(
        self,
        reference: str,
        sender: PartyAddress,
        recipient: PartyAddress,
        items: List[ParcelItem],
        signature_required: Optional[bool] = None,
        service_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "reference": reference,
            "sender": sender.to_payload(),
            "recipient": recipient.to_payload(),
            "items": [item.to_payload() for item in items],
            "signatureRequired": (
                self.default_signature_required if signature_required is None else signature_required
            ),
            "serviceType": service_type or self.default_service_type,
        }

    def normalize_shipment(self, data: Dict[str, Any]) -> ShipmentResult:
        tracking_number = data.get("trackingNumber")
        tracking_url = data.get("trackingUrl")
        if not tracking_url and tracking_number:
            tracking_url = self.get_tracking_url(tracking_number)

        return ShipmentResult(
            success=data.get("success") is not False,
            consignment_number=data.get("consignmentNumber"),
            tracking_number=tracking_number,
            tracking_url=tracking_url,
            label_url=data.get("labelUrl"),
            error_message=data.get("error"),
            provider_response=data,
        )
