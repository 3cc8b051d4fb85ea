"""
Label Store

Labels are fetched from the courier backend once per shipment and kept on
the shipment row; later requests are served from the stored bytes.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shipbridge.core.exceptions import LabelDownloadError, MissingConsignmentError, ProviderError
from shipbridge.models.shipment import Shipment, label_file_name
from shipbridge.services.courier_client import CourierClient

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"


@dataclass
class LabelDocument:
    content: bytes
    filename: str
    media_type: str = PDF_MEDIA_TYPE


class LabelStore:

    def __init__(self, courier: CourierClient):
        self.courier = courier

    async def download(self, consignment_number: str, provider_id: Optional[int] = None) -> bytes:
        """
        Fetch label bytes from the courier backend.

        Raises:
            LabelDownloadError: Transport or HTTP failure
        """
        try:
            return await self.courier.download_label(consignment_number)
        except ProviderError as e:
            raise LabelDownloadError(
                f"Label download failed for {consignment_number}: {e.message}",
                provider_id=provider_id,
                status_code=e.status_code,
            )

    async def try_download(self, consignment_number: Optional[str], provider_id: Optional[int] = None) -> Optional[bytes]:
        """Best-effort download used right after booking; failures return None."""
        if not consignment_number:
            return None
        try:
            return await self.download(consignment_number, provider_id)
        except LabelDownloadError as e:
            logger.warning(f"{e.message}; label can be fetched later")
            return None

    async def get_label(self, db: AsyncSession, shipment: Shipment) -> LabelDocument:
        """
        Return the shipment's label, downloading and storing it on first use.

        Raises:
            MissingConsignmentError: Nothing to fetch the label by
            LabelDownloadError: Provider download failed
        """
        if shipment.label_data is not None:
            return LabelDocument(
                content=shipment.label_data,
                filename=shipment.label_file_name or label_file_name(shipment.consignment_number or shipment.id),
            )

        if not shipment.consignment_number:
            raise MissingConsignmentError(
                "No consignment number available",
                details={"shipment_id": shipment.id},
            )

        content = await self.download(shipment.consignment_number, shipment.provider_id)
        shipment.attach_label(content)
        await db.flush()
        logger.info(f"Stored label for shipment {shipment.id} ({len(content)} bytes)")

        return LabelDocument(content=content, filename=shipment.label_file_name)
