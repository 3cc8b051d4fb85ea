"""
Tests for the order lifecycle controller against an in-memory database.
"""
import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from conftest import quote_response
from shipbridge.core.exceptions import (
    InvalidTransitionError,
    NoQuotesAvailableError,
    OrderNotFoundError,
    OrderNotShippableError,
    ProviderError,
    QuotationExpiredError,
    QuotationNotFoundError,
    ShipmentCreationError,
    ShipmentNotFoundError,
    WarehouseError,
)
from shipbridge.models import ErrorLogEntry, Order, OrderStatus, Quotation, Shipment
from shipbridge.services.order_lifecycle import (
    ALLOWED_TRANSITIONS,
    can_transition,
    transition,
)
from shipbridge.services.warehouse_client import WarehouseOrder, WarehouseOrderPage


def both_providers_quote(courier, fastway=12.50, nz_post=15.00):
    async def calculate(payload):
        if payload["providerId"] == 1:
            return quote_response(fastway, base=fastway)
        return quote_response(nz_post, price=nz_post)

    courier.calculate.side_effect = calculate


async def count(db_session, model, *where):
    result = await db_session.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar_one()


def source_order(**overrides):
    record = {
        "id": "cc-77",
        "orderNumber": "SO-77",
        "customer": {"name": "Tama Rewi", "phone": "021 000 111"},
        "deliveryAddress": {
            "street": "3 Rimu Road",
            "suburb": "Kelburn",
            "city": "Wellington",
            "postcode": "6012",
        },
        "items": [{"description": "Books", "weight": 4}],
    }
    record.update(overrides)
    return WarehouseOrder.model_validate(record)


@pytest.fixture
def warehouse():
    client = MagicMock()
    client.is_configured = True
    client.get_order = AsyncMock(return_value=source_order())
    client.list_orders = AsyncMock()
    client.update_order = AsyncMock()
    return client


class TestTransitions:

    def test_label_created_is_terminal(self):
        assert ALLOWED_TRANSITIONS[OrderStatus.LABEL_CREATED] == set()

    def test_error_recovers_only_through_quote(self):
        assert can_transition(OrderStatus.ERROR, OrderStatus.QUOTED)
        assert not can_transition(OrderStatus.ERROR, OrderStatus.LABEL_CREATED)
        assert not can_transition(OrderStatus.ERROR, OrderStatus.READY_TO_QUOTE)

    def test_illegal_transition_raises(self):
        order = Order(id="o1", status=OrderStatus.READY_TO_QUOTE)

        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(order, OrderStatus.LABEL_CREATED)

        assert exc_info.value.http_status == 409
        assert order.status == OrderStatus.READY_TO_QUOTE

    def test_transition_applies_status(self):
        order = Order(id="o1", status=OrderStatus.QUOTED)

        transition(order, OrderStatus.ERROR)

        assert order.status == OrderStatus.ERROR


class TestSyncAndGetOrder:

    @pytest.mark.asyncio
    async def test_unknown_order_without_source(self, controller):
        with pytest.raises(OrderNotFoundError):
            await controller.sync_and_get_order("missing")

    @pytest.mark.asyncio
    async def test_found_by_external_id(self, controller, make_order):
        order = await make_order(external_id="cc-500")

        view = await controller.sync_and_get_order("cc-500")

        assert view.order.id == order.id
        assert view.validation_errors == []

    @pytest.mark.asyncio
    async def test_new_order_created_from_source(self, controller, warehouse, db_session):
        controller.warehouse = warehouse

        view = await controller.sync_and_get_order("cc-77")

        assert view.order.external_id == "cc-77"
        assert view.order.order_number == "SO-77"
        assert view.order.status == OrderStatus.READY_TO_QUOTE
        assert view.order.delivery_country == "NZ"
        assert view.order.items == [{"description": "Books", "weight": 4.0}]
        assert await count(db_session, Order) == 1

    @pytest.mark.asyncio
    async def test_missing_suburb_syncs_as_pending_data(self, controller, warehouse):
        warehouse.get_order.return_value = source_order(deliveryAddress={
            "street": "3 Rimu Road",
            "city": "Wellington",
            "postcode": "6012",
        })
        controller.warehouse = warehouse

        view = await controller.sync_and_get_order("cc-77")

        assert view.order.status == OrderStatus.PENDING_DATA
        assert view.validation_errors == ["Delivery suburb"]

    @pytest.mark.asyncio
    async def test_resync_promotes_pending_order(self, controller, warehouse, make_order):
        order = await make_order(external_id="cc-77", delivery_suburb=None, status=OrderStatus.PENDING_DATA)
        controller.warehouse = warehouse

        view = await controller.sync_and_get_order(order.id)

        assert view.order.status == OrderStatus.READY_TO_QUOTE
        assert view.order.delivery_suburb == "Kelburn"

    @pytest.mark.asyncio
    async def test_quoted_order_not_resynced(self, controller, warehouse, make_order):
        order = await make_order(external_id="cc-77", status=OrderStatus.QUOTED)
        controller.warehouse = warehouse

        view = await controller.sync_and_get_order(order.id)

        warehouse.get_order.assert_not_called()
        assert view.order.delivery_suburb == "Mount Eden"

    @pytest.mark.asyncio
    async def test_source_failure_serves_local_copy(self, controller, warehouse, make_order):
        order = await make_order(external_id="cc-77", status=OrderStatus.PENDING_DATA, delivery_city=None)
        warehouse.get_order.side_effect = WarehouseError("Warehouse API error: 503 - down")
        controller.warehouse = warehouse

        view = await controller.sync_and_get_order(order.id)

        assert view.order.status == OrderStatus.PENDING_DATA
        assert view.validation_errors == ["Delivery city"]

    @pytest.mark.asyncio
    async def test_source_404_is_not_found(self, controller, warehouse):
        warehouse.get_order.side_effect = WarehouseError("missing", details={"status_code": 404})
        controller.warehouse = warehouse

        with pytest.raises(OrderNotFoundError):
            await controller.sync_and_get_order("cc-404")

    @pytest.mark.asyncio
    async def test_view_limits_error_history(self, controller, make_order, db_session):
        order = await make_order()
        for n in range(7):
            db_session.add(ErrorLogEntry(order_id=order.id, action="quote", message=f"failure {n}"))
        await db_session.commit()

        view = await controller.sync_and_get_order(order.id)

        assert len(view.recent_errors) == 5
        assert await count(db_session, ErrorLogEntry) == 7


class TestListOrders:

    @pytest.mark.asyncio
    async def test_local_filter_search_and_pagination(self, controller, make_order):
        await make_order(order_number="SO-1", customer_name="Aroha Ngata")
        await make_order(order_number="SO-2", customer_name="Tama Rewi", status=OrderStatus.QUOTED)
        await make_order(order_number="SO-3", customer_name="aroha smith", delivery_postcode="9016")

        by_name = await controller.list_orders(search="AROHA")
        by_postcode = await controller.list_orders(search="9016")
        quoted = await controller.list_orders(status="QUOTED")
        everything = await controller.list_orders(status="all", per_page=2)

        assert {o.order_number for o in by_name.orders} == {"SO-1", "SO-3"}
        assert [o.order_number for o in by_postcode.orders] == ["SO-3"]
        assert [o.order_number for o in quoted.orders] == ["SO-2"]
        assert everything.total == 3
        assert everything.total_pages == 2
        assert len(everything.orders) == 2

    @pytest.mark.asyncio
    async def test_source_listing_upserts(self, controller, warehouse, make_order, db_session):
        existing = await make_order(external_id="cc-77", status=OrderStatus.QUOTED, order_number="OLD")
        warehouse.list_orders.return_value = WarehouseOrderPage(
            orders=[source_order(), source_order(id="cc-78", orderNumber="SO-78")],
            total=2,
            page=1,
            per_page=20,
        )
        controller.warehouse = warehouse

        page = await controller.list_orders(status="all")

        warehouse.list_orders.assert_awaited_once_with(page=1, per_page=20, status=None, search=None)
        assert page.total == 2
        assert [o.external_id for o in page.orders] == ["cc-77", "cc-78"]
        # Quoted order keeps its snapshot and status
        assert page.orders[0].id == existing.id
        assert page.orders[0].order_number == "OLD"
        assert page.orders[0].status == OrderStatus.QUOTED
        assert page.orders[1].status == OrderStatus.READY_TO_QUOTE
        assert await count(db_session, Order) == 2


class TestRequestQuotes:

    @pytest.mark.asyncio
    async def test_both_providers_quote(self, controller, courier, make_order, db_session, clock):
        order = await make_order()
        both_providers_quote(courier)

        batch = await controller.request_quotes(order.id)

        assert [q.total_price for q in batch.quotations] == [Decimal("12.50"), Decimal("15.00")]
        assert [q.provider_name for q in batch.quotations] == ["Fastway", "NZ Post"]
        assert all(q.expires_at == clock.now + timedelta(hours=24) for q in batch.quotations)
        assert order.status == OrderStatus.QUOTED
        assert await count(db_session, Quotation, Quotation.order_id == order.id) == 2

    @pytest.mark.asyncio
    async def test_requote_replaces_previous_batch(self, controller, courier, make_order, db_session):
        order = await make_order()
        both_providers_quote(courier)
        first = await controller.request_quotes(order.id)

        both_providers_quote(courier, fastway=11.00, nz_post=14.00)
        second = await controller.request_quotes(order.id)

        result = await db_session.execute(select(Quotation).where(Quotation.order_id == order.id))
        stored = result.scalars().all()
        assert {q.id for q in stored} == {q.id for q in second.quotations}
        assert not {q.id for q in stored} & {q.id for q in first.quotations}
        assert len({q.batch_id for q in stored}) == 1
        assert order.status == OrderStatus.QUOTED

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, controller, courier, make_order, db_session):
        order = await make_order()
        courier.calculate.side_effect = ProviderError("Courier IT API error: 500 - down", status_code=500)

        with pytest.raises(NoQuotesAvailableError) as exc_info:
            await controller.request_quotes(order.id)

        assert exc_info.value.message == "No quotes available from any provider"
        assert order.status == OrderStatus.READY_TO_QUOTE
        errors = (await db_session.execute(select(ErrorLogEntry))).scalars().all()
        assert len(errors) == 1
        assert errors[0].action == "quote"
        assert await count(db_session, Quotation) == 0

    @pytest.mark.asyncio
    async def test_failed_requote_keeps_existing_quotes(self, controller, courier, make_order, db_session):
        order = await make_order()
        both_providers_quote(courier)
        await controller.request_quotes(order.id)

        courier.calculate.side_effect = ProviderError("down")
        with pytest.raises(NoQuotesAvailableError):
            await controller.request_quotes(order.id)

        assert order.status == OrderStatus.QUOTED
        assert await count(db_session, Quotation) == 2

    @pytest.mark.asyncio
    async def test_rural_flag_persisted_even_when_quoting_fails(self, controller, courier, make_order):
        order = await make_order()
        courier.check_rural.return_value = True
        courier.calculate.side_effect = ProviderError("down")

        with pytest.raises(NoQuotesAvailableError):
            await controller.request_quotes(order.id)

        assert order.is_rural is True

    @pytest.mark.asyncio
    async def test_custom_pickup_postcode(self, controller, courier, make_order):
        order = await make_order()
        both_providers_quote(courier)

        await controller.request_quotes(order.id, pickup_postcode="0600")

        assert courier.calculate.call_args.args[0]["pickupPostcode"] == "0600"

    @pytest.mark.asyncio
    async def test_incomplete_order_rejected(self, controller, courier, make_order):
        order = await make_order(items=[], status=OrderStatus.PENDING_DATA)

        with pytest.raises(OrderNotShippableError) as exc_info:
            await controller.request_quotes(order.id)

        assert exc_info.value.missing_fields == ["Order items"]
        courier.calculate.assert_not_called()

    @pytest.mark.asyncio
    async def test_label_created_order_cannot_requote(self, controller, courier, make_order):
        order = await make_order(status=OrderStatus.LABEL_CREATED)

        with pytest.raises(InvalidTransitionError):
            await controller.request_quotes(order.id)

        courier.calculate.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_order(self, controller):
        with pytest.raises(OrderNotFoundError):
            await controller.request_quotes("nope")


class TestSelectQuoteAndShip:

    async def quoted_order(self, controller, courier, make_order):
        order = await make_order()
        both_providers_quote(courier)
        batch = await controller.request_quotes(order.id)
        return order, batch.quotations[0]

    @pytest.mark.asyncio
    async def test_successful_shipment(self, controller, courier, make_order, sender, db_session):
        order, quotation = await self.quoted_order(controller, courier, make_order)

        outcome = await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert outcome.conflict is False
        shipment = outcome.shipment
        assert shipment.consignment_number == "CN123456"
        assert shipment.final_price == Decimal("12.50")
        assert shipment.label_downloaded is True
        assert shipment.label_file_name == "label-CN123456.pdf"
        assert order.status == OrderStatus.LABEL_CREATED
        assert quotation.is_selected is True
        assert await count(db_session, Quotation, Quotation.is_selected.is_(True)) == 1

        payload = courier.send_parcel.call_args.args[0]
        assert payload["providerId"] == 1
        assert payload["reference"] == "SO-1001"
        assert payload["recipient"]["name"] == "Aroha Ngata"
        assert payload["recipient"]["suburb"] == "Mount Eden"
        assert payload["sender"]["name"] == "Main Warehouse"
        assert payload["serviceType"] == "Parcel"

    @pytest.mark.asyncio
    async def test_second_and_third_calls_are_conflicts(self, controller, courier, make_order, sender, db_session):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        first = await controller.select_quote_and_ship(order.id, quotation.id, sender)

        second = await controller.select_quote_and_ship(order.id, quotation.id, sender)
        third = await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert second.conflict is True
        assert third.conflict is True
        assert second.shipment.id == first.shipment.id
        assert await count(db_session, Shipment) == 1
        assert courier.send_parcel.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_quotation(self, controller, courier, make_order, sender, db_session, clock):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        clock.now += timedelta(hours=24, seconds=1)

        with pytest.raises(QuotationExpiredError) as exc_info:
            await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert exc_info.value.message == "Quotation has expired, please re-quote"
        assert order.status == OrderStatus.QUOTED
        assert await count(db_session, Shipment) == 0
        courier.send_parcel.assert_not_called()

    @pytest.mark.asyncio
    async def test_quotation_from_superseded_batch(self, controller, courier, make_order, sender):
        order, stale = await self.quoted_order(controller, courier, make_order)
        await controller.request_quotes(order.id)

        with pytest.raises(QuotationNotFoundError):
            await controller.select_quote_and_ship(order.id, stale.id, sender)

    @pytest.mark.asyncio
    async def test_quotation_of_another_order(self, controller, courier, make_order, sender):
        order, _ = await self.quoted_order(controller, courier, make_order)
        _, foreign = await self.quoted_order(controller, courier, make_order)

        with pytest.raises(QuotationNotFoundError):
            await controller.select_quote_and_ship(order.id, foreign.id, sender)

    @pytest.mark.asyncio
    async def test_provider_rejection_moves_order_to_error(self, controller, courier, make_order, sender, db_session):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        courier.send_parcel.return_value = {"success": False, "error": "Address not serviceable"}

        with pytest.raises(ShipmentCreationError) as exc_info:
            await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert exc_info.value.message == "Address not serviceable"
        assert order.status == OrderStatus.ERROR
        assert await count(db_session, Shipment) == 0
        errors = (await db_session.execute(select(ErrorLogEntry))).scalars().all()
        assert [(e.action, e.message) for e in errors] == [("ship", "Address not serviceable")]
        assert errors[0].details["error"] == "Address not serviceable"

    @pytest.mark.asyncio
    async def test_transport_failure_moves_order_to_error(self, controller, courier, make_order, sender):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        courier.send_parcel.side_effect = ProviderError("Courier IT API error: 500 - boom", status_code=500)

        with pytest.raises(ShipmentCreationError):
            await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert order.status == OrderStatus.ERROR

    @pytest.mark.asyncio
    async def test_error_order_recovers_by_requoting(self, controller, courier, make_order, sender):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        courier.send_parcel.return_value = {"success": False}
        with pytest.raises(ShipmentCreationError):
            await controller.select_quote_and_ship(order.id, quotation.id, sender)

        with pytest.raises(InvalidTransitionError):
            await controller.select_quote_and_ship(order.id, quotation.id, sender)

        batch = await controller.request_quotes(order.id)
        assert order.status == OrderStatus.QUOTED

        courier.send_parcel.return_value = {"success": True, "consignmentNumber": "CN9"}
        outcome = await controller.select_quote_and_ship(order.id, batch.quotations[0].id, sender)
        assert outcome.shipment.consignment_number == "CN9"
        assert order.status == OrderStatus.LABEL_CREATED

    @pytest.mark.asyncio
    async def test_order_without_number_ships_under_source_id(self, controller, courier, make_order, sender, db_session):
        order = await make_order(order_number="", external_id="cc-blank")
        both_providers_quote(courier)
        quotation = (await controller.request_quotes(order.id)).quotations[0]

        outcome = await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert outcome.conflict is False
        assert order.status == OrderStatus.LABEL_CREATED
        assert courier.send_parcel.call_args.args[0]["reference"] == "cc-blank"
        assert await count(db_session, ErrorLogEntry) == 0

    @pytest.mark.asyncio
    async def test_concurrent_ship_requests_book_once(self, controller, courier, make_order, sender, db_session):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        booked = courier.send_parcel.return_value

        async def slow_booking(payload):
            await asyncio.sleep(0.01)
            return booked

        courier.send_parcel.side_effect = slow_booking

        outcomes = await asyncio.gather(
            controller.select_quote_and_ship(order.id, quotation.id, sender),
            controller.select_quote_and_ship(order.id, quotation.id, sender),
        )

        assert sorted(o.conflict for o in outcomes) == [False, True]
        assert outcomes[0].shipment.id == outcomes[1].shipment.id
        assert courier.send_parcel.await_count == 1
        assert await count(db_session, Shipment) == 1

    @pytest.mark.asyncio
    async def test_ship_requires_quoted_status(self, controller, make_order, sender):
        order = await make_order()

        with pytest.raises(InvalidTransitionError):
            await controller.select_quote_and_ship(order.id, "any", sender)

    @pytest.mark.asyncio
    async def test_label_failure_is_not_fatal(self, controller, courier, make_order, sender):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        courier.download_label.side_effect = ProviderError("Courier IT API error: 503 - busy", status_code=503)

        outcome = await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert outcome.shipment.label_downloaded is False
        assert outcome.shipment.label_data is None
        assert order.status == OrderStatus.LABEL_CREATED

        courier.download_label.side_effect = None
        courier.download_label.return_value = b"%PDF-1.4 late"
        document = await controller.get_label(outcome.shipment.id)

        assert document.content == b"%PDF-1.4 late"
        assert outcome.shipment.label_downloaded is True
        assert courier.download_label.await_count == 2

    @pytest.mark.asyncio
    async def test_tracking_pushed_to_source(self, controller, courier, make_order, sender, warehouse):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        controller.warehouse = warehouse

        await controller.select_quote_and_ship(order.id, quotation.id, sender)

        warehouse.update_order.assert_awaited_once_with(
            order.external_id,
            tracking_number="TRK123456",
            tracking_url="https://track.test/TRK123456",
        )

    @pytest.mark.asyncio
    async def test_tracking_push_failure_does_not_fail_ship(self, controller, courier, make_order, sender, warehouse):
        order, quotation = await self.quoted_order(controller, courier, make_order)
        warehouse.update_order.side_effect = WarehouseError("down")
        controller.warehouse = warehouse

        outcome = await controller.select_quote_and_ship(order.id, quotation.id, sender)

        assert outcome.conflict is False
        assert order.status == OrderStatus.LABEL_CREATED


class TestLabelsAndShipments:

    @pytest.mark.asyncio
    async def test_unknown_shipment(self, controller):
        with pytest.raises(ShipmentNotFoundError):
            await controller.get_label("missing")

    @pytest.mark.asyncio
    async def test_stored_label_not_downloaded_again(self, controller, courier, make_order, sender):
        order = await make_order()
        both_providers_quote(courier)
        batch = await controller.request_quotes(order.id)
        outcome = await controller.select_quote_and_ship(order.id, batch.quotations[0].id, sender)

        document = await controller.get_label(outcome.shipment.id)

        assert document.filename == "label-CN123456.pdf"
        assert courier.download_label.await_count == 1

    @pytest.mark.asyncio
    async def test_list_shipments_includes_order(self, controller, courier, make_order, sender):
        order = await make_order(order_number="SO-55")
        both_providers_quote(courier)
        batch = await controller.request_quotes(order.id)
        await controller.select_quote_and_ship(order.id, batch.quotations[0].id, sender)

        shipments = await controller.list_shipments()

        assert len(shipments) == 1
        assert shipments[0].order.order_number == "SO-55"
