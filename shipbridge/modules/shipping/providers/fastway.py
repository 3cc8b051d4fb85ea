"""
Fastway provider adapter (courier backend provider id 1)
"""
from typing import Any, Dict

from shipbridge.modules.shipping.providers import register_provider
from shipbridge.modules.shipping.providers.base import BaseProvider

FASTWAY_PROVIDER_ID = 1
FASTWAY_TRACKING_URL = "https://www.fastway.co.nz/tools/track/?l={tracking_number}"


@register_provider(FASTWAY_PROVIDER_ID)
class FastwayProvider(BaseProvider):

    @property
    def provider_id(self) -> int:
        return FASTWAY_PROVIDER_ID

    @property
    def provider_name(self) -> str:
        return "Fastway"

    def extract_base_price(self, data: Dict[str, Any]) -> Any:
        return data.get("basePrice")

    def get_tracking_url(self, tracking_number: str) -> str:
        return FASTWAY_TRACKING_URL.format(tracking_number=tracking_number)
