"""
Courier backend client

One HTTP API fronts every courier provider; requests carry a provider id.
Implements:
- Quote calculation
- Shipment creation (send parcel)
- Label download
- Rural postcode lookup

All calls are authenticated with a static basic-auth credential pair.
"""
import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from shipbridge.core.config import settings
from shipbridge.core.exceptions import ProviderError, ProviderQuoteError
from shipbridge.core.http_client import ResilientHTTPClient, CircuitOpenError
from shipbridge.modules.shipping.providers import ProviderFactory
from shipbridge.modules.shipping.providers.base import BaseProvider, ParcelItem, QuoteResult

logger = logging.getLogger(__name__)

# API endpoints
CALCULATE_PATH = "/api/calculate"
SEND_PARCEL_PATH = "/api/sendparcel"
DOWNLOAD_LABEL_PATH = "/api/downloadlabel"
CHECK_RURAL_PATH = "/api/checkrural"


def basic_auth_header(username: str, password: str) -> str:
    credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {credentials}"


class CourierClient:
    """
    Async client for the courier backend.

    Non-2xx responses and network failures raise ProviderError with the
    status code and a truncated body.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.COURIER_BASE_URL).rstrip("/")
        self._http = ResilientHTTPClient(
            timeout=timeout or settings.COURIER_TIMEOUT_SECONDS,
            default_headers={
                "Authorization": basic_auth_header(
                    username if username is not None else settings.COURIER_USERNAME,
                    password if password is not None else settings.COURIER_PASSWORD,
                ),
                "Accept": "application/json",
            },
            transport=transport,
        )

    async def close(self):
        await self._http.close()

    async def _request(
        self,
        method: str,
        path: str,
        provider_id: Optional[int] = None,
        **kwargs,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        # Providers share one host; each gets its own circuit
        circuit_key = None
        if provider_id is not None:
            circuit_key = f"{httpx.URL(url).host}#provider-{provider_id}"

        try:
            response = await self._http.request(method, url, circuit_key=circuit_key, **kwargs)
        except CircuitOpenError as e:
            raise ProviderError(str(e), provider_id=provider_id)
        except httpx.TimeoutException:
            logger.error(f"Courier {method} {path} timed out")
            raise ProviderError(f"Courier request timed out: {path}", provider_id=provider_id)
        except httpx.RequestError as e:
            logger.error(f"Courier {method} {path} failed: {e}")
            raise ProviderError(f"Network error: {e}", provider_id=provider_id)

        if not response.is_success:
            body = response.text[:500]
            logger.error(f"Courier API {method} {path} -> {response.status_code}: {body}")
            raise ProviderError(
                f"Courier IT API error: {response.status_code} - {body}",
                provider_id=provider_id,
                status_code=response.status_code,
            )

        logger.debug(f"Courier API {method} {path} -> {response.status_code}")
        return response

    def _decode(self, response: httpx.Response, provider_id: Optional[int] = None) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            raise ProviderError(
                f"Courier returned non-JSON body: {response.text[:500]}",
                provider_id=provider_id,
                status_code=response.status_code,
            )
        return data if isinstance(data, dict) else {"data": data}

    async def calculate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        provider_id = payload.get("providerId")
        response = await self._request("POST", CALCULATE_PATH, provider_id=provider_id, json=payload)
        return self._decode(response, provider_id)

    async def send_parcel(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        provider_id = payload.get("providerId")
        response = await self._request("POST", SEND_PARCEL_PATH, provider_id=provider_id, json=payload)
        return self._decode(response, provider_id)

    async def download_label(self, consignment_number: str) -> bytes:
        """Fetch the label document (PDF bytes) for a consignment."""
        response = await self._request(
            "GET",
            DOWNLOAD_LABEL_PATH,
            params={"consignment": consignment_number},
            headers={"Accept": "application/pdf"},
        )
        return response.content

    async def check_rural(self, postcode: str) -> bool:
        """
        Whether a postcode is in a rural delivery zone.

        Lookup failures are logged and treated as not rural.
        """
        try:
            response = await self._request("POST", CHECK_RURAL_PATH, json={"postcode": postcode})
            data = self._decode(response)
        except ProviderError as e:
            logger.warning(f"Rural lookup failed for postcode {postcode}: {e.message}")
            return False
        return bool(data.get("isRural", False))


class ProviderQuoteClient:
    """
    Quotes one provider through the courier backend.

    Any failure (transport, HTTP status, unusable response, deadline)
    surfaces as ProviderQuoteError for that provider only.
    """

    def __init__(self, courier: CourierClient, timeout: Optional[float] = None):
        self.courier = courier
        self.timeout = timeout or settings.COURIER_QUOTE_TIMEOUT_SECONDS

    def _get_provider(self, provider_id: int) -> BaseProvider:
        provider = ProviderFactory.get(provider_id)
        if not provider:
            raise ProviderQuoteError(f"Unknown provider: {provider_id}", provider_id=provider_id)
        return provider

    async def quote(
        self,
        provider_id: int,
        pickup_postcode: str,
        delivery_postcode: str,
        items: List[ParcelItem],
        is_rural: bool = False,
    ) -> QuoteResult:
        provider = self._get_provider(provider_id)
        payload = provider.build_quote_request(pickup_postcode, delivery_postcode, items, is_rural)

        try:
            data = await asyncio.wait_for(self.courier.calculate(payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProviderQuoteError(
                f"{provider.provider_name} did not quote within {self.timeout:g}s",
                provider_id=provider_id,
            )
        except ProviderQuoteError:
            raise
        except ProviderError as e:
            raise ProviderQuoteError(e.message, provider_id=provider_id, status_code=e.status_code)

        return provider.normalize_quote(data)
