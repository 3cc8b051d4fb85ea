"""
Order Lifecycle Controller

The only entry point the API layer calls. Owns order status: every status
change goes through `transition()` and the allowed-transitions table.

    PENDING_DATA <-> READY_TO_QUOTE      re-sync re-runs validation
    READY_TO_QUOTE / QUOTED / ERROR -> QUOTED   quoting returned >= 1 quote
    QUOTED -> LABEL_CREATED              shipment booked
    QUOTED -> ERROR                      shipment creation failed
    LABEL_CREATED                        terminal

Quote replacement and shipment creation for one order are serialized by a
per-order lock plus SELECT ... FOR UPDATE on the order row.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shipbridge.core.config import settings
from shipbridge.core.exceptions import (
    InvalidTransitionError,
    NoQuotesAvailableError,
    OrderNotFoundError,
    OrderNotShippableError,
    ShipmentCreationError,
    ShipmentNotFoundError,
    WarehouseError,
)
from shipbridge.core.locks import OrderLockManager, order_locks
from shipbridge.core.token_cache import utcnow
from shipbridge.models import ErrorLogEntry, Order, OrderStatus, Quotation, Shipment
from shipbridge.models.order import new_id
from shipbridge.modules.shipping.providers.base import PartyAddress
from shipbridge.services.label_store import LabelDocument, LabelStore
from shipbridge.services.quote_aggregator import QuoteAggregator
from shipbridge.services.shipment_issuer import ShipmentIssuer, ShipOutcome
from shipbridge.services.validation import validate_for_shipping
from shipbridge.services.warehouse_client import WarehouseClient, WarehouseOrder

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[OrderStatus, set] = {
    OrderStatus.PENDING_DATA: {OrderStatus.PENDING_DATA, OrderStatus.READY_TO_QUOTE},
    OrderStatus.READY_TO_QUOTE: {OrderStatus.PENDING_DATA, OrderStatus.READY_TO_QUOTE, OrderStatus.QUOTED},
    OrderStatus.QUOTED: {OrderStatus.QUOTED, OrderStatus.LABEL_CREATED, OrderStatus.ERROR},
    OrderStatus.ERROR: {OrderStatus.QUOTED},
    OrderStatus.LABEL_CREATED: set(),
}

# States in which the local copy follows the source
SYNCABLE_STATES = (OrderStatus.PENDING_DATA, OrderStatus.READY_TO_QUOTE)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def transition(order: Order, target: OrderStatus) -> None:
    """Move an order to `target`, or raise InvalidTransitionError."""
    current = order.status
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value, details={"order_id": order.id})
    if current != target:
        logger.info(f"Order {order.id}: {current.value} -> {target.value}")
    order.status = target


def initial_status(order: Order) -> OrderStatus:
    result = validate_for_shipping(order.delivery_address, order.items)
    return OrderStatus.READY_TO_QUOTE if result.is_valid else OrderStatus.PENDING_DATA


@dataclass
class OrderView:
    order: Order
    validation_errors: List[str] = field(default_factory=list)
    recent_errors: List[ErrorLogEntry] = field(default_factory=list)
    quotations: List[Quotation] = field(default_factory=list)
    shipment: Optional[Shipment] = None


@dataclass
class OrderPage:
    orders: List[Order]
    page: int
    per_page: int
    total: int
    total_pages: int


@dataclass
class QuoteBatch:
    is_rural: bool
    quotations: List[Quotation]
    failures: Dict[int, str] = field(default_factory=dict)


class OrderLifecycleController:
    """
    Drives orders through quoting and shipment creation.

    Args:
        db: Session for the current request
        warehouse: Order source client (None or unconfigured = local only)
        aggregator: Multi-provider quote aggregator
        issuer: Shipment issuer
        label_store: Label cache/downloader
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        db: AsyncSession,
        warehouse: Optional[WarehouseClient],
        aggregator: QuoteAggregator,
        issuer: ShipmentIssuer,
        label_store: LabelStore,
        clock: Callable[[], datetime] = utcnow,
        locks: OrderLockManager = order_locks,
    ):
        self.db = db
        self.warehouse = warehouse
        self.aggregator = aggregator
        self.issuer = issuer
        self.label_store = label_store
        self.clock = clock
        self.locks = locks

    @property
    def source_configured(self) -> bool:
        return self.warehouse is not None and self.warehouse.is_configured

    # ==================== Lookup ====================

    async def _find(self, order_id: str) -> Optional[Order]:
        order = await self.db.get(Order, order_id)
        if order:
            return order
        result = await self.db.execute(select(Order).where(Order.external_id == order_id))
        return result.scalar_one_or_none()

    async def _get_or_404(self, order_id: str) -> Order:
        order = await self._find(order_id)
        if not order:
            raise OrderNotFoundError("Order not found", details={"order_id": order_id})
        return order

    async def _lock_row(self, order: Order) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ==================== Source sync ====================

    def _apply_source(self, order: Order, source: WarehouseOrder) -> None:
        address = source.delivery_address
        customer = source.customer

        order.order_number = source.display_number
        order.customer_name = (customer.name if customer else None) or "Unknown"
        order.customer_email = customer.email if customer else None
        order.customer_phone = customer.phone if customer else None
        order.delivery_street = address.street if address else None
        order.delivery_street2 = address.street2 if address else None
        order.delivery_suburb = address.suburb if address else None
        order.delivery_city = address.city if address else None
        order.delivery_postcode = address.postcode if address else None
        order.delivery_country = (address.country if address else None) or settings.DEFAULT_COUNTRY
        order.items = source.items_list()
        order.source_data = source.model_dump(mode="json", by_alias=True)
        order.synced_at = self.clock()

    async def _upsert(self, source: WarehouseOrder) -> Order:
        """Create or refresh the local copy of a source order."""
        result = await self.db.execute(select(Order).where(Order.external_id == source.id))
        order = result.scalar_one_or_none()

        if order is None:
            order = Order(id=new_id(), external_id=source.id)
            self._apply_source(order, source)
            order.status = initial_status(order)
            self.db.add(order)
            logger.info(f"Order {order.id} created from source {source.id} as {order.status.value}")
            return order

        # Snapshot is frozen once the order has been quoted
        if order.status in SYNCABLE_STATES:
            self._apply_source(order, source)
            transition(order, initial_status(order))
        return order

    # ==================== Operations ====================

    async def sync_and_get_order(self, order_id: str) -> OrderView:
        """
        Fetch an order, pulling it from the source when it is new locally or
        still awaiting data.
        """
        order = await self._find(order_id)

        if order is None:
            if not self.source_configured:
                raise OrderNotFoundError("Order not found", details={"order_id": order_id})
            try:
                source = await self.warehouse.get_order(order_id)
            except WarehouseError as e:
                if e.details.get("status_code") == 404:
                    raise OrderNotFoundError("Order not found", details={"order_id": order_id})
                raise
            order = await self._upsert(source)
            await self.db.commit()

        elif order.status in SYNCABLE_STATES and self.source_configured:
            try:
                source = await self.warehouse.get_order(order.external_id)
            except WarehouseError as e:
                logger.warning(f"Re-sync of order {order.id} failed, serving local copy: {e.message}")
            else:
                async with self.locks.hold(order.id):
                    order = await self._lock_row(order)
                    await self._upsert(source)
                    await self.db.commit()

        return await self._view(order)

    async def _view(self, order: Order) -> OrderView:
        quotations = await self.db.execute(
            select(Quotation)
            .where(Quotation.order_id == order.id)
            .order_by(Quotation.total_price.asc())
        )
        errors = await self.db.execute(
            select(ErrorLogEntry)
            .where(ErrorLogEntry.order_id == order.id)
            .order_by(ErrorLogEntry.created_at.desc(), ErrorLogEntry.id.desc())
            .limit(settings.ERROR_LOG_DISPLAY_LIMIT)
        )
        validation = validate_for_shipping(order.delivery_address, order.items)

        return OrderView(
            order=order,
            validation_errors=validation.missing_fields,
            recent_errors=list(errors.scalars().all()),
            quotations=list(quotations.scalars().all()),
            shipment=await self.issuer.existing_shipment(self.db, order.id),
        )

    async def list_orders(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> OrderPage:
        """List orders from the source (syncing each) or from the local store."""
        status = None if not status or status.lower() == "all" else status

        if self.source_configured:
            source_page = await self.warehouse.list_orders(
                page=page, per_page=per_page, status=status, search=search
            )
            orders = []
            for source in source_page.orders:
                if not source.id:
                    logger.warning("Skipping source order without id")
                    continue
                orders.append(await self._upsert(source))
            await self.db.commit()
            total = source_page.total
        else:
            query = select(Order)
            if status:
                query = query.where(Order.status == OrderStatus(status))
            if search:
                pattern = f"%{search}%"
                query = query.where(
                    or_(
                        Order.order_number.ilike(pattern),
                        Order.customer_name.ilike(pattern),
                        Order.delivery_postcode.ilike(pattern),
                    )
                )

            total = (await self.db.execute(
                select(func.count()).select_from(query.subquery())
            )).scalar_one()

            result = await self.db.execute(
                query.order_by(Order.created_at.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            )
            orders = list(result.scalars().all())

        return OrderPage(
            orders=orders,
            page=page,
            per_page=per_page,
            total=total,
            total_pages=math.ceil(total / per_page) if per_page else 0,
        )

    async def request_quotes(self, order_id: str, pickup_postcode: Optional[str] = None) -> QuoteBatch:
        """
        Quote every provider and replace the order's quotation batch.

        Raises:
            OrderNotFoundError: Unknown order
            OrderNotShippableError: Order data incomplete
            InvalidTransitionError: Order already has a label
            NoQuotesAvailableError: No provider returned a usable quote
        """
        order = await self._get_or_404(order_id)

        async with self.locks.hold(order.id):
            order = await self._lock_row(order)

            if not can_transition(order.status, OrderStatus.QUOTED) and order.status not in SYNCABLE_STATES:
                raise InvalidTransitionError(
                    order.status.value, OrderStatus.QUOTED.value, details={"order_id": order.id}
                )

            validation = validate_for_shipping(order.delivery_address, order.items)
            if not validation.is_valid:
                raise OrderNotShippableError(
                    "Order is missing data required for quoting",
                    missing_fields=validation.missing_fields,
                )
            if order.status == OrderStatus.PENDING_DATA:
                transition(order, OrderStatus.READY_TO_QUOTE)

            aggregation = await self.aggregator.get_quotes(order, pickup_postcode)
            order.is_rural = aggregation.is_rural

            if aggregation.is_empty:
                error = NoQuotesAvailableError(failures=aggregation.failures)
                self.db.add(ErrorLogEntry(
                    order_id=order.id,
                    action="quote",
                    message=error.message,
                    details=error.details,
                ))
                await self.db.commit()
                logger.warning(f"Order {order.id}: no quotes from {len(aggregation.failures)} provider(s)")
                raise error

            now = self.clock()
            batch_id = new_id()
            expires_at = Quotation.create_expiry(now, settings.QUOTE_TTL_HOURS)

            await self.db.execute(delete(Quotation).where(Quotation.order_id == order.id))
            quotations = [
                Quotation(
                    id=new_id(),
                    order_id=order.id,
                    batch_id=batch_id,
                    provider_id=quote.provider_id,
                    provider_name=quote.provider_name,
                    service_type=quote.service_type,
                    base_price=quote.base_price,
                    rural_surcharge=quote.rural_surcharge,
                    gst=quote.gst,
                    total_price=quote.total_price,
                    estimated_days=quote.estimated_days,
                    response_data=quote.raw,
                    is_selected=False,
                    expires_at=expires_at,
                    created_at=now,
                )
                for quote in aggregation.quotes
            ]
            self.db.add_all(quotations)
            transition(order, OrderStatus.QUOTED)
            await self.db.commit()

            logger.info(f"Order {order.id}: stored {len(quotations)} quotation(s) in batch {batch_id}")
            return QuoteBatch(is_rural=order.is_rural, quotations=quotations, failures=aggregation.failures)

    async def select_quote_and_ship(
        self,
        order_id: str,
        quotation_id: str,
        sender: PartyAddress,
    ) -> ShipOutcome:
        """
        Book the shipment for an order from one of its current quotations.

        An existing shipment is returned as a conflict outcome. Provider
        rejection is logged against the order and moves it to ERROR.
        """
        order = await self._get_or_404(order_id)

        async with self.locks.hold(order.id):
            order = await self._lock_row(order)

            existing = await self.issuer.existing_shipment(self.db, order.id)
            if existing:
                logger.info(f"Order {order.id} already shipped as {existing.id}")
                return ShipOutcome(shipment=existing, conflict=True)

            if not can_transition(order.status, OrderStatus.LABEL_CREATED):
                raise InvalidTransitionError(
                    order.status.value, OrderStatus.LABEL_CREATED.value, details={"order_id": order.id}
                )

            try:
                outcome = await self.issuer.create_shipment(
                    self.db, order, quotation_id, sender, self.clock()
                )
            except ShipmentCreationError as e:
                self.db.add(ErrorLogEntry(
                    order_id=order.id,
                    action="ship",
                    message=e.message,
                    details=e.details,
                ))
                transition(order, OrderStatus.ERROR)
                await self.db.commit()
                logger.error(f"Order {order.id}: shipment creation failed: {e.message}")
                raise

            if outcome.conflict:
                return outcome

            transition(order, OrderStatus.LABEL_CREATED)
            await self.db.commit()

        await self._push_tracking(order, outcome.shipment)
        return outcome

    async def _push_tracking(self, order: Order, shipment: Shipment) -> None:
        if not self.source_configured or not shipment.tracking_number:
            return
        try:
            await self.warehouse.update_order(
                order.external_id,
                tracking_number=shipment.tracking_number,
                tracking_url=shipment.tracking_url,
            )
        except WarehouseError as e:
            logger.warning(f"Could not push tracking for order {order.id} to source: {e.message}")

    async def get_label(self, shipment_id: str) -> LabelDocument:
        """Label for a shipment; downloaded once, then served from storage."""
        shipment = await self.db.get(Shipment, shipment_id)
        if not shipment:
            raise ShipmentNotFoundError("Shipment not found", details={"shipment_id": shipment_id})

        if shipment.label_data is not None:
            return await self.label_store.get_label(self.db, shipment)

        async with self.locks.hold(shipment.order_id):
            await self.db.refresh(shipment)
            document = await self.label_store.get_label(self.db, shipment)
            await self.db.commit()
            return document

    async def list_shipments(self, limit: Optional[int] = None) -> List[Shipment]:
        """Shipments newest first, with their order loaded."""
        query = (
            select(Shipment)
            .options(selectinload(Shipment.order))
            .order_by(Shipment.created_at.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
