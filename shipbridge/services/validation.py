"""
Shipping validation

Pure checks deciding whether an order can be quoted and whether a
shipment request is complete. Every rule is evaluated so that all
problems are reported together.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from shipbridge.core.config import settings


@dataclass
class ValidationResult:
    is_valid: bool
    missing_fields: List[str] = field(default_factory=list)


def _item_weight(item: Any) -> Optional[float]:
    if isinstance(item, dict):
        return item.get("weight")
    return getattr(item, "weight", None)


def _check_item_weights(
    items: Sequence[Any],
    missing: List[str],
    weight_label: str,
    limit_label: str,
    max_weight: float,
) -> None:
    for index, item in enumerate(items, start=1):
        weight = _item_weight(item)
        if not weight or not math.isfinite(weight) or weight <= 0:
            missing.append(weight_label.format(n=index))
        elif weight > max_weight:
            missing.append(limit_label.format(n=index, limit=f"{max_weight:g}"))


def validate_for_shipping(
    address: Optional[Dict[str, Any]],
    items: Optional[Sequence[Any]],
    max_weight: Optional[float] = None,
) -> ValidationResult:
    """
    Decide whether an order's delivery address and items are shippable.

    Args:
        address: Delivery address with street, suburb, city, postcode
        items: Line items; each needs a positive weight within the limit
        max_weight: Per-item weight limit in kg (defaults to settings)

    Returns:
        ValidationResult listing one message per violation, in rule order
    """
    max_weight = settings.MAX_ITEM_WEIGHT_KG if max_weight is None else max_weight
    address = address or {}
    missing: List[str] = []

    if not address.get("street"):
        missing.append("Delivery street")
    if not address.get("suburb"):
        missing.append("Delivery suburb")
    if not address.get("city"):
        missing.append("Delivery city")
    if not address.get("postcode"):
        missing.append("Delivery postcode")

    if not items:
        missing.append("Order items")
    else:
        _check_item_weights(
            items,
            missing,
            weight_label="Item {n} weight",
            limit_label="Item {n} exceeds {limit}kg limit",
            max_weight=max_weight,
        )

    return ValidationResult(is_valid=not missing, missing_fields=missing)


def validate_shipment_request(
    sender: Optional[Dict[str, Any]],
    recipient: Optional[Dict[str, Any]],
    items: Optional[Sequence[Any]],
    reference: Optional[str] = None,
) -> ValidationResult:
    """Check a shipment-creation payload before it is sent to a provider."""
    errors: List[str] = []

    if not reference:
        errors.append("Reference is required")

    for role, party in (("Sender", sender), ("Recipient", recipient)):
        if not party:
            errors.append(f"{role} address is required")
            continue
        for key in ("name", "street", "suburb", "city", "postcode"):
            if not party.get(key):
                errors.append(f"{role} {key} is required")

    if not items:
        errors.append("At least one item is required")
    else:
        _check_item_weights(
            items,
            errors,
            weight_label="Item {n}: Weight is required",
            limit_label="Item {n}: Weight exceeds {limit}kg limit",
            max_weight=settings.MAX_ITEM_WEIGHT_KG,
        )

    return ValidationResult(is_valid=not errors, missing_fields=errors)
