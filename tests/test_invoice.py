from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import FakeInvoicing, sample_cart, TRIP_ID
from src.checkout.exceptions import InvoicePostingError, InvoicingError
from src.checkout.invoice_service import (
    InvoiceBuilder, TripDetailExtractor, build_description, build_invoice_line, count_passengers, parse_expiry, resolve_invoice_total
)
from src.checkout.pricing import PriceAdjuster
from src.checkout.schemas import AgentAttribution, MappedPassenger, Purchaser, SelectedSeat, TripDetails


PURCHASER = Purchaser(first_name="Tendai", last_name="Moyo", email="tendai@example.com", phone="+263771234567")
PASSENGERS = [
    MappedPassenger(
        id=1, first_name="Tendai", last_name="Moyo", phone="+263771234567",
        selected_seats=[SelectedSeat(segment_id="seg-out-1", seat_id="A1")],
    )
]
PRICING = {"retail_price": {"total": 5000, "currency": "USD"}}


def _issue(builder, invoicing, durable_id="101000001", pricing=PRICING, attribution=None):
    return builder.issue(
        invoicing, durable_id, "busbud-cart-1", TRIP_ID, PURCHASER, PASSENGERS,
        pricing, {"items": [{}]}, sample_cart(), attribution or AgentAttribution(),
    )


# Pricing chain

def test_retail_price_cents_become_invoice_total(plain_adjuster):
    resolved = resolve_invoice_total(PRICING, {}, plain_adjuster)

    assert resolved.value == (Decimal("50.00"), "USD")
    assert resolved.source == "retail_price"

    line = build_invoice_line("Trip", resolved.value[0])
    assert line["price_unit"] == line["price_total"] == 50.0
    assert line["quantity"] == 1
    assert line["tax_ids"] == []


def test_cached_canonical_total_is_second_choice(plain_adjuster):
    document = {"passengerDetails": {"pricing_metadata": {"canonical_adjusted_total_cents": 4550, "currency": "CAD"}}}

    resolved = resolve_invoice_total({"retail_price": {"total": 0}}, document, plain_adjuster)

    assert resolved.value == (Decimal("45.50"), "CAD")
    assert resolved.source == "pricing_metadata"


def test_original_charges_are_adjusted():
    adjuster = PriceAdjuster(apply=True, markup=Decimal("10"))

    resolved = resolve_invoice_total({"original_charges": {"total": 4000, "currency": "USD"}}, {}, adjuster)

    assert resolved.value == (Decimal("44.00"), "USD")
    assert resolved.source == "original_charges"


def test_missing_price_data_fails(plain_adjuster):
    with pytest.raises(InvoicingError):
        resolve_invoice_total({}, {}, plain_adjuster)


# Expiry

def test_parse_expiry_formats():
    now = datetime(2026, 11, 1, 12, 0, tzinfo=timezone.utc)

    assert parse_expiry(1793620800000, now) == datetime.fromtimestamp(1793620800, tz=timezone.utc)
    assert parse_expiry(900, now) == now + timedelta(seconds=900)
    assert parse_expiry("900", now) == now + timedelta(seconds=900)
    assert parse_expiry("2026-11-02T08:00:00Z", now) == datetime(2026, 11, 2, 8, 0, tzinfo=timezone.utc)
    assert parse_expiry("soon", now) == now + timedelta(hours=24)
    assert parse_expiry(None, now, default_hours=2) == now + timedelta(hours=2)


# Trip details

def test_trip_legs_select_outbound_and_return():
    selection = {
        "items": [{
            "segments": [
                {"id": "s-back", "origin": {"name": "Bulawayo"}, "destination": {"name": "Harare"}},
                {"id": "s-out", "origin": {"name": "Harare"}, "destination": {"name": "Bulawayo"}},
            ],
            "trip_legs": [{"segment_ids": ["s-out"]}, {"segment_ids": ["s-back"]}],
        }]
    }

    outbound, inbound = TripDetailExtractor().extract(selection, None, TRIP_ID, {})

    assert outbound.origin_city == "Harare"
    assert inbound.origin_city == "Bulawayo"


def test_live_cart_used_without_selection():
    outbound, inbound = TripDetailExtractor().extract(None, sample_cart(), TRIP_ID, {})

    assert outbound.origin_city == "Harare"
    assert outbound.destination == "Bulawayo Terminal"
    assert outbound.departure_time == datetime(2026, 11, 2, 8, 30, tzinfo=timezone.utc)
    assert inbound is None


def test_description_and_passenger_count():
    text = build_description(TripDetails(origin_city="Harare", destination_city="Bulawayo"), None, PURCHASER)

    assert text.startswith("Trip: Harare to Bulawayo\nDeparture: Unknown\n")
    assert "Email: tendai@example.com" in text
    assert count_passengers({"retail_price": {"items": [{}, {}]}}, None, PASSENGERS) == 2
    assert count_passengers({}, {"items": [{}, {}, {}]}, PASSENGERS) == 3
    assert count_passengers({}, {}, []) == 1


# Builder

def test_issue_posts_invoice_and_records_both_stores(documents, carts):
    invoicing = FakeInvoicing()
    builder = InvoiceBuilder(documents, carts, adjuster=PriceAdjuster())
    attribution = AgentAttribution(agent_mode=True, agent_email="desk@example.com", agent_name="Harare Desk")

    summary = _issue(builder, invoicing, attribution=attribution)

    assert summary.total == Decimal("50.00")
    assert summary.amount_untaxed == Decimal("50.00")
    assert summary.amount_tax == 0
    assert summary.currency == "USD"
    assert summary.status.value == "posted"
    assert invoicing.invoices[summary.id]["payment_reference"] == "101000001"
    assert invoicing.invoices[summary.id]["lines"][0][2]["price_total"] == 50.0
    assert summary.pnr == "101000001"
    assert invoicing.posted == [summary.id]
    assert invoicing.partners[0]["name"] == "Tendai Moyo"
    assert invoicing.invoices[summary.id]["expiry"] > datetime.now(timezone.utc)

    document = documents.get("101000001")
    assert document["status"] == "awaiting_payment"
    assert document["invoice"]["posted"] is True
    assert document["invoice"]["total"] == 50.0
    assert documents.find_by_booking_reference("101000001") is not None

    cart = carts.get_cart("101000001")
    assert cart.status == "awaiting_payment"
    assert cart.retail_price == Decimal("50.00")
    assert cart.origin == "Harare"
    assert cart.booked_by == "Harare Desk"
    assert cart.passenger_count == 1


def test_reissue_reuses_invoice_for_same_reference(documents, carts):
    invoicing = FakeInvoicing()
    builder = InvoiceBuilder(documents, carts, adjuster=PriceAdjuster())

    first = _issue(builder, invoicing)
    second = _issue(builder, invoicing)

    assert first.id == second.id
    assert len(invoicing.invoices) == 1


def test_posting_failure_keeps_invoice_id_on_document(documents, carts):
    documents.set("101000001", {"busbudCartId": "busbud-cart-1", "status": "active"})
    invoicing = FakeInvoicing(post_result=False)
    builder = InvoiceBuilder(documents, carts, adjuster=PriceAdjuster())

    with pytest.raises(InvoicePostingError) as exc_info:
        _issue(builder, invoicing)

    assert exc_info.value.invoice_id == 100
    document = documents.get("101000001")
    assert document["invoice"]["id"] == 100
    assert document["invoice"]["posted"] is False
    assert document["invoice"]["status"] == "draft"
    assert document["invoice"]["amountUntaxed"] == 50.0
    assert document["status"] == "active"
    assert carts.get_cart("101000001") is None


def test_posting_error_is_wrapped(documents, carts):
    documents.set("101000001", {"busbudCartId": "busbud-cart-1", "status": "active"})
    builder = InvoiceBuilder(documents, carts, adjuster=PriceAdjuster())

    with pytest.raises(InvoicePostingError) as exc_info:
        _issue(builder, FakeInvoicing(post_error=True))

    assert isinstance(exc_info.value.cause, InvoicingError)


def test_pricing_falls_back_to_cached_provider_response(documents, carts):
    documents.set("101000001", {"passengerDetails": {"busbudResponse": {"retail_price": {"total": 2500, "currency": "EUR"}}}})
    builder = InvoiceBuilder(documents, carts, adjuster=PriceAdjuster())

    summary = _issue(builder, FakeInvoicing(), pricing=None)

    assert summary.total == Decimal("25.00")
    assert summary.currency == "EUR"
