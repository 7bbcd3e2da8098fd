import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from src.config import settings
from src.ports import CartRepository, DocumentStore, InvoicingService
from src.checkout.exceptions import InvoicePostingError, InvoicingError
from src.checkout.passenger_service import matching_cart_item
from src.checkout.pricing import PriceAdjuster
from src.checkout.resolvers import Resolved, dig, first_list
from src.checkout.schemas import (
    AgentAttribution, CartStatus, InvoiceStatus, InvoiceSummary, MappedPassenger,
    Purchaser, TripDetails
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
EPOCH_MS_THRESHOLD = 1e12


# ================================
# Pricing
# ================================

def _cents_to_amount(cents: Any) -> Decimal:
    return (Decimal(str(cents)) / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)


def _positive_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool) and value > 0


def resolve_invoice_total(
    pricing_response: Optional[Dict[str, Any]],
    cart_document: Optional[Dict[str, Any]],
    adjuster: PriceAdjuster,
) -> Resolved[Tuple[Decimal, str]]:
    """Invoice total and currency: provider retail price, cached canonical total, then adjusted original charges"""
    response = pricing_response or {}
    fallback_currency = dig(response, "charges", "currency") or response.get("currency") or "USD"

    retail = response.get("retail_price") or response.get("adjusted_charges")
    if isinstance(retail, dict) and _positive_number(retail.get("total")):
        currency = retail.get("currency") or fallback_currency
        return Resolved((_cents_to_amount(retail["total"]), currency), "retail_price")

    document = cart_document or {}
    pricing_meta = dig(document, "passengerDetails", "pricing_metadata") or document.get("pricing_metadata")
    if isinstance(pricing_meta, dict) and _positive_number(pricing_meta.get("canonical_adjusted_total_cents")):
        currency = pricing_meta.get("currency") or fallback_currency
        amount = _cents_to_amount(pricing_meta["canonical_adjusted_total_cents"])
        return Resolved((amount, currency), "pricing_metadata")

    original = (
        response.get("cost_price")
        or response.get("original_charges")
        or dig(retail, "metadata", "original_charges")
    )
    if isinstance(original, dict) and isinstance(original.get("total"), (int, float)):
        currency = original.get("currency") or fallback_currency
        adjusted = adjuster.adjust(_cents_to_amount(original["total"]), currency)
        return Resolved((adjusted.amount, currency), "original_charges")

    raise InvoicingError("Missing or invalid retail price data; cannot build invoice lines")


# ================================
# Trip details
# ================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            seconds = value / 1000 if value > EPOCH_MS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        logger.debug("Unparseable timestamp", extra={"value": str(value)})
        return None


def trip_details_from_segment(segment: Dict[str, Any]) -> TripDetails:
    origin = dig(segment, "origin", "name") or "Unknown"
    destination = dig(segment, "destination", "name") or "Unknown"
    return TripDetails(
        origin=origin,
        origin_city=dig(segment, "origin", "city", "name") or origin,
        destination=destination,
        destination_city=dig(segment, "destination", "city", "name") or destination,
        departure_time=parse_timestamp(dig(segment, "departure_time", "timestamp")),
        arrival_time=parse_timestamp(dig(segment, "arrival_time", "timestamp")),
        operator=dig(segment, "operator", "name") or "Unknown",
        vehicle_type=dig(segment, "vehicle", "type") or "Bus",
    )


class TripDetailExtractor:
    """Finds the outbound and return segments an invoice describes"""

    def segments_and_legs(
        self,
        trip_selection: Optional[Dict[str, Any]],
        live_cart: Optional[Dict[str, Any]],
        trip_id: Optional[str],
        cart_document: Optional[Dict[str, Any]],
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], str]:
        """Segments and trip legs from the first source that has segments"""
        if isinstance(trip_selection, dict):
            item = dig(trip_selection, "items", 0) or {}
            segments = first_list(
                item.get("segments"),
                trip_selection.get("segments"),
                dig(trip_selection, "trips", 0, "segments"),
            )
            legs = first_list(
                item.get("trip_legs"),
                trip_selection.get("trip_legs"),
                dig(trip_selection, "trips", 0, "trip_legs"),
            )
            if segments:
                return segments, legs, "trip_selection"

        item = matching_cart_item(live_cart, trip_id)
        if item and first_list(item.get("segments")):
            return item["segments"], first_list(item.get("trip_legs")), "live_cart"

        cached = (cart_document or {}).get("busbudResponse")
        if isinstance(cached, dict):
            segments = first_list(
                dig(cached, "trip", "segments"),
                cached.get("segments"),
                dig(cached, "journey", "segments"),
                dig(cached, "trips", 0, "segments"),
            )
            legs = first_list(cached.get("trip_legs"), dig(cached, "trips", 0, "trip_legs"))
            if segments:
                return segments, legs, "cart_document"

        return [], [], "none"

    def extract(
        self,
        trip_selection: Optional[Dict[str, Any]],
        live_cart: Optional[Dict[str, Any]],
        trip_id: Optional[str],
        cart_document: Optional[Dict[str, Any]],
    ) -> Tuple[TripDetails, Optional[TripDetails]]:
        segments, legs, source = self.segments_and_legs(trip_selection, live_cart, trip_id, cart_document)
        segments = [s for s in segments if isinstance(s, dict)]

        outbound = segments[0] if segments else None
        inbound = None
        if legs and segments:
            outbound_id = dig(legs, 0, "segment_ids", 0)
            return_id = dig(legs, 1, "segment_ids", 0)
            if outbound_id:
                outbound = next((s for s in segments if s.get("id") == outbound_id), outbound)
            if return_id:
                inbound = next((s for s in segments if s.get("id") == return_id), None)
        elif len(segments) > 1:
            inbound = segments[1]

        logger.debug("Extracted trip details", extra={"segment_source": source, "has_return": inbound is not None})
        return (
            trip_details_from_segment(outbound) if outbound else TripDetails(),
            trip_details_from_segment(inbound) if inbound else None,
        )


def count_passengers(pricing_response: Optional[Dict[str, Any]], charges: Optional[Dict[str, Any]],
                     passengers: List[MappedPassenger]) -> int:
    retail_items = dig(pricing_response, "retail_price", "items")
    if isinstance(retail_items, list) and retail_items:
        return len(retail_items)
    charge_items = (charges or {}).get("items")
    if isinstance(charge_items, list) and charge_items:
        return len(charge_items)
    return max(len(passengers), 1)


# ================================
# Expiry
# ================================

def parse_expiry(value: Any, now: Optional[datetime] = None, default_hours: int = 24) -> datetime:
    """Epoch ms (> 1e12), seconds from now, or an ISO string; otherwise ``now + default_hours``"""
    now = now or datetime.now(timezone.utc)
    fallback = now + timedelta(hours=default_hours)

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())

    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if value > EPOCH_MS_THRESHOLD:
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
            return now + timedelta(seconds=value)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning("Could not parse cart expiry; using default", extra={"value": str(value)})
        return fallback

    return fallback


def cart_expiry_source(
    cart_document: Optional[Dict[str, Any]],
    relational_expires_at: Optional[datetime],
    live_cart: Optional[Dict[str, Any]],
) -> Any:
    document = cart_document or {}
    candidates = (
        document.get("expiresAt"),
        document.get("expires_at"),
        relational_expires_at,
        dig(document, "busbudResponse", "metadata", "ttl"),
        dig(document, "busbudResponse", "metadata", "pollTtl"),
        dig(document, "metadata", "ttl"),
        dig(live_cart, "metadata", "ttl"),
        (live_cart or {}).get("_ttl"),
    )
    return next((c for c in candidates if c not in (None, "")), None)


# ================================
# Invoice lines
# ================================

def _format_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "Unknown"


def build_description(outbound: TripDetails, inbound: Optional[TripDetails], purchaser: Purchaser) -> str:
    text = (
        f"Trip: {outbound.origin_city} to {outbound.destination_city}\n"
        f"Departure: {_format_time(outbound.departure_time)}\n"
        f"Arrival: {_format_time(outbound.arrival_time)}\n"
    )
    if inbound is not None:
        text += (
            f"\nReturn Trip: {inbound.origin_city} to {inbound.destination_city}\n"
            f"Return Departure: {_format_time(inbound.departure_time)}\n"
            f"Return Arrival: {_format_time(inbound.arrival_time)}\n"
        )
    text += (
        f"\nPassenger: {purchaser.first_name or 'N/A'} {purchaser.last_name}\n"
        f"Email: {purchaser.email or 'N/A'}\n"
        f"Phone: {purchaser.phone or 'N/A'}\n\n"
    )
    return text


def build_invoice_line(description: str, total: Decimal) -> Dict[str, Any]:
    amount = float(total)
    return {
        "name": description,
        "quantity": 1,
        "price_unit": amount,
        "price_total": amount,
        "product_id": settings.INVOICE_PRODUCT_ID,
        "product_uom_id": settings.INVOICE_UOM_ID,
        "tax_ids": [],
    }


# ================================
# Builder
# ================================

class InvoiceBuilder:
    """Creates and posts the hold invoice, then records it in both stores"""

    def __init__(
        self,
        documents: DocumentStore,
        carts: CartRepository,
        adjuster: Optional[PriceAdjuster] = None,
        extractor: Optional[TripDetailExtractor] = None,
    ):
        self.documents = documents
        self.carts = carts
        self.adjuster = adjuster or PriceAdjuster.from_settings()
        self.extractor = extractor or TripDetailExtractor()

    def issue(
        self,
        invoicing: InvoicingService,
        durable_id: str,
        provider_cart_id: str,
        trip_id: str,
        purchaser: Purchaser,
        passengers: List[MappedPassenger],
        pricing_response: Optional[Dict[str, Any]],
        charges: Optional[Dict[str, Any]],
        live_cart: Optional[Dict[str, Any]],
        attribution: AgentAttribution,
    ) -> InvoiceSummary:
        cart_document = self.documents.get(durable_id) or {}

        if not pricing_response:
            pricing_response = dig(cart_document, "passengerDetails", "busbudResponse") or cart_document.get("busbudResponse")

        total_resolved = resolve_invoice_total(pricing_response, cart_document, self.adjuster)
        total, currency = total_resolved.value

        outbound, inbound = self.extractor.extract(
            self.carts.latest_trip_selection(provider_cart_id), live_cart, trip_id, cart_document
        )
        passenger_count = count_passengers(pricing_response, charges, passengers)

        relational = self.carts.get_cart(durable_id)
        expiry = parse_expiry(
            cart_expiry_source(cart_document, getattr(relational, "expires_at", None), live_cart),
            default_hours=settings.HOLD_EXPIRY_HOURS,
        )

        line = build_invoice_line(build_description(outbound, inbound, purchaser), total)

        logger.info(
            "Creating hold invoice",
            extra={
                "durable_cart_id": durable_id,
                "total": str(total),
                "currency": currency,
                "price_source": total_resolved.source,
                "passenger_count": passenger_count,
            }
        )

        partner_id = invoicing.find_or_create_partner(
            purchaser.full_name or purchaser.email or "Unknown", purchaser.email, purchaser.phone
        )
        invoice_id = invoicing.find_or_create_invoice(partner_id, durable_id, [[0, 0, line]], expiry)

        summary = InvoiceSummary(
            id=invoice_id,
            pnr=durable_id,
            number=f"INV-{invoice_id}",
            total=total,
            amount_untaxed=total,
            currency=currency,
            expires_at=expiry,
            status=InvoiceStatus.DRAFT,
        )

        try:
            posted = invoicing.post_invoice(invoice_id)
        except InvoicingError as e:
            self._record_unposted(durable_id, summary)
            raise InvoicePostingError(
                f"Failed to post invoice {invoice_id}", cause=e, invoice_id=invoice_id
            ) from e

        if not posted:
            self._record_unposted(durable_id, summary)
            raise InvoicePostingError(
                f"Failed to post invoice {invoice_id}: post operation returned false", invoice_id=invoice_id
            )

        summary = summary.model_copy(update={"status": InvoiceStatus.POSTED})
        self._record_posted(
            durable_id, summary, outbound, inbound, passenger_count, purchaser, passengers, attribution
        )
        logger.info("Hold invoice posted", extra={"durable_cart_id": durable_id, "invoice_id": invoice_id})
        return summary

    def _record_unposted(self, durable_id: str, summary: InvoiceSummary) -> None:
        logger.error(
            "Invoice created but not posted",
            extra={"durable_cart_id": durable_id, "invoice_id": summary.id}
        )
        self.documents.update(
            durable_id, {f"invoice.{key}": value for key, value in self._invoice_document(summary).items()}
        )

    def _record_posted(
        self,
        durable_id: str,
        summary: InvoiceSummary,
        outbound: TripDetails,
        inbound: Optional[TripDetails],
        passenger_count: int,
        purchaser: Purchaser,
        passengers: List[MappedPassenger],
        attribution: AgentAttribution,
    ) -> None:
        self.documents.set(durable_id, {
            "status": CartStatus.AWAITING_PAYMENT.value,
            "bookingReference": durable_id,
            "invoice": self._invoice_document(summary),
            "retailPrice": str(summary.total),
            "currency": summary.currency,
            "expiresAt": summary.expires_at.isoformat(),
        })

        self.carts.upsert_cart(
            durable_id,
            status=CartStatus.AWAITING_PAYMENT.value,
            currency=summary.currency,
            retail_price=summary.total,
            origin=outbound.origin_city,
            destination=outbound.destination_city,
            depart_at=outbound.departure_time,
            arrive_at=outbound.arrival_time,
            return_origin=inbound.origin_city if inbound else None,
            return_destination=inbound.destination_city if inbound else None,
            return_depart_at=inbound.departure_time if inbound else None,
            return_arrive_at=inbound.arrival_time if inbound else None,
            passenger_count=passenger_count,
            booked_by=attribution.booked_by,
            purchaser=purchaser.model_dump(),
            passengers=[p.model_dump() for p in passengers],
            invoice=summary.model_dump(mode="json", by_alias=True),
            expires_at=summary.expires_at,
        )

    @staticmethod
    def _invoice_document(summary: InvoiceSummary) -> Dict[str, Any]:
        document = summary.model_dump(mode="json", by_alias=True)
        document["posted"] = summary.status == InvoiceStatus.POSTED
        return document
