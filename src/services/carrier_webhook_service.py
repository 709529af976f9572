"""Carrier webhook pipeline: authenticate, parse, translate, apply."""

import logging
from collections.abc import Mapping

from src.schemas.common import WebhookAck
from src.services.carriers import CarrierProvider, get_carrier
from src.services.shipment_updates import ShipmentUpdateService
from src.services.status_translator import UnmappedStatusError

logger = logging.getLogger(__name__)


class CarrierWebhookService:
    """Apply carrier status notifications to shipments."""

    def __init__(self, updates: ShipmentUpdateService | None = None, carrier_factory=get_carrier) -> None:
        """Initialize with the shipment update path."""
        self.updates = updates or ShipmentUpdateService()
        self.carrier_factory = carrier_factory

    async def handle(self, carrier_name: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        """Process one carrier webhook.

        Verification runs on the raw body before anything is parsed; a
        rejected event never reaches translation or the update path.

        Returns:
            WebhookAck: Applied, duplicate, or ignored for an unknown status.

        Raises:
            AuthenticationError: If verification fails.
            ValidationError: If the payload is malformed.
            NotFoundError: If no shipment has the tracking id.
        """
        carrier: CarrierProvider = self.carrier_factory(carrier_name)
        carrier.verify(raw_body, headers)
        event = carrier.parse_event(raw_body, headers)

        try:
            status = carrier.require_status(event.vendor_status)
        except UnmappedStatusError as e:
            logger.info("%s; acknowledged and ignored", e, extra={"tracking_id": event.tracking_id})
            return WebhookAck(ignored=True)

        outcome = await self.updates.apply(
            event.tracking_id,
            status,
            at=event.occurred_at,
            event_id=event.event_id,
        )
        return WebhookAck(duplicate=outcome.duplicate)
