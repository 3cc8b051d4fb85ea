"""
NZ Post provider adapter (courier backend provider id 2)

NZ Post quotes report the base amount as `price`; older responses use
`basePrice` like the other providers.
"""
from typing import Any, Dict

from shipbridge.modules.shipping.providers import register_provider
from shipbridge.modules.shipping.providers.base import BaseProvider

NZ_POST_PROVIDER_ID = 2
NZ_POST_TRACKING_URL = "https://www.nzpost.co.nz/tools/tracking/item/{tracking_number}"


@register_provider(NZ_POST_PROVIDER_ID)
class NZPostProvider(BaseProvider):

    @property
    def provider_id(self) -> int:
        return NZ_POST_PROVIDER_ID

    @property
    def provider_name(self) -> str:
        return "NZ Post"

    def extract_base_price(self, data: Dict[str, Any]) -> Any:
        price = data.get("price")
        return price if price is not None else data.get("basePrice")

    def get_tracking_url(self, tracking_number: str) -> str:
        return NZ_POST_TRACKING_URL.format(tracking_number=tracking_number)
