"""
ShipBridge Exception Hierarchy

Structured exception classes for the order fulfillment engine. All
exceptions include code, message, and details for the per-order error log
and for API responses.

Exception Hierarchy:
    ShipBridgeError
    ├── ProviderError
    │   ├── ProviderQuoteError
    │   └── LabelDownloadError
    ├── WarehouseError
    ├── OrderNotFoundError
    ├── ShipmentNotFoundError
    ├── QuotationNotFoundError
    ├── QuotationExpiredError
    ├── NoQuotesAvailableError
    ├── ShipmentCreationError
    ├── MissingConsignmentError
    ├── OrderNotShippableError
    └── InvalidTransitionError
"""
import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class ShipBridgeError(Exception):
    """
    Base exception for all ShipBridge errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "SHIPBRIDGE_ERROR"
    default_severity: str = "P2"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# PROVIDER ERRORS
# =============================================================================

class ProviderError(ShipBridgeError):
    """Courier backend call failed (HTTP error, network error, deadline)."""
    default_code = "PROVIDER_ERROR"
    default_severity = "P1"
    http_status = 502

    def __init__(
        self,
        message: str,
        provider_id: Optional[int] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "provider_id": provider_id,
            "status_code": status_code,
        })
        self.provider_id = provider_id
        self.status_code = status_code
        super().__init__(message, details=details, **kwargs)


class ProviderQuoteError(ProviderError):
    """A single provider could not produce a usable quote."""
    default_code = "PROVIDER_QUOTE_FAILED"
    default_severity = "P3"


class LabelDownloadError(ProviderError):
    """Label document could not be fetched from the provider."""
    default_code = "LABEL_DOWNLOAD_FAILED"
    default_severity = "P2"


# =============================================================================
# WAREHOUSE SOURCE ERRORS
# =============================================================================

class WarehouseError(ShipBridgeError):
    """Warehouse order source failure (auth, HTTP, parse)."""
    default_code = "WAREHOUSE_ERROR"
    default_severity = "P1"
    http_status = 502


# =============================================================================
# LOOKUP ERRORS
# =============================================================================

class OrderNotFoundError(ShipBridgeError):
    default_code = "ORDER_NOT_FOUND"
    default_severity = "P3"
    http_status = 404


class ShipmentNotFoundError(ShipBridgeError):
    default_code = "SHIPMENT_NOT_FOUND"
    default_severity = "P3"
    http_status = 404


class QuotationNotFoundError(ShipBridgeError):
    default_code = "QUOTATION_NOT_FOUND"
    default_severity = "P3"
    http_status = 404


# =============================================================================
# LIFECYCLE ERRORS
# =============================================================================

class QuotationExpiredError(ShipBridgeError):
    """Selected quotation is past its expiry; caller must re-quote."""
    default_code = "QUOTATION_EXPIRED"
    default_severity = "P3"
    http_status = 400


class NoQuotesAvailableError(ShipBridgeError):
    """No provider returned a usable quote."""
    default_code = "NO_QUOTES_AVAILABLE"
    default_severity = "P2"
    http_status = 400

    def __init__(
        self,
        message: str = "No quotes available from any provider",
        failures: Optional[Dict[int, str]] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["provider_failures"] = {str(k): v for k, v in (failures or {}).items()}
        super().__init__(message, details=details, **kwargs)


class ShipmentCreationError(ShipBridgeError):
    """Terminal failure creating a shipment; the order moves to ERROR."""
    default_code = "SHIPMENT_CREATION_FAILED"
    default_severity = "P1"
    http_status = 400


class MissingConsignmentError(ShipBridgeError):
    """Label requested for a shipment that has no consignment number."""
    default_code = "NO_CONSIGNMENT_NUMBER"
    default_severity = "P3"
    http_status = 400


class OrderNotShippableError(ShipBridgeError):
    """Order data is incomplete or out of policy for quoting."""
    default_code = "ORDER_NOT_SHIPPABLE"
    default_severity = "P3"
    http_status = 400

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["missing_fields"] = list(missing_fields or [])
        self.missing_fields = list(missing_fields or [])
        super().__init__(message, details=details, **kwargs)


class InvalidTransitionError(ShipBridgeError):
    """Order status change not allowed from the current status."""
    default_code = "INVALID_STATUS_TRANSITION"
    default_severity = "P3"
    http_status = 409

    def __init__(self, current: str, target: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"current_status": current, "target_status": target})
        super().__init__(
            f"Cannot move order from {current} to {target}",
            details=details,
            **kwargs
        )
