import logging
from typing import Any, Dict, Iterable, List, Optional

from src.checkout.resolvers import dig
from src.checkout.schemas import MappedPassenger

logger = logging.getLogger(__name__)

ETICKET = "eticket"
DEFAULT_SEGMENT_KEY = "default"


def _item_segment_ids(item: Dict[str, Any]) -> Iterable[str]:
    """Segment ids on one line item: ``segments``, ``ticket_types`` keys, ``trip_legs``"""
    for segment in item.get("segments") or []:
        if isinstance(segment, dict) and segment.get("id"):
            yield str(segment["id"])

    ticket_types = item.get("ticket_types")
    if isinstance(ticket_types, dict):
        for segment_id in ticket_types:
            if segment_id:
                yield str(segment_id)

    for leg in item.get("trip_legs") or []:
        if not isinstance(leg, dict):
            continue
        for segment_id in leg.get("segment_ids") or []:
            if segment_id:
                yield str(segment_id)


def _cart_items(cart: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    items = cart.get("items") if isinstance(cart, dict) else None
    return [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []


def cached_trip_item(cart_document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    item = dig(cart_document, "trip", "_raw", "items", 0)
    return item if isinstance(item, dict) else None


class SegmentTicketTypeResolver:
    """Builds the segment -> ticket type map sent with passenger updates"""

    def resolve(
        self,
        cart: Optional[Dict[str, Any]],
        passengers: List[MappedPassenger],
        cart_document: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, str]:
        ticket_types: Dict[str, str] = {}
        sources: Dict[str, str] = {}

        def add(segment_id: str, source: str) -> None:
            # First writer wins
            if segment_id and segment_id not in ticket_types:
                ticket_types[segment_id] = ETICKET
                sources[segment_id] = source

        live_items = _cart_items(cart)
        for item in live_items:
            for segment_id in _item_segment_ids(item):
                add(segment_id, "cart")

        cached_item = cached_trip_item(cart_document)
        if cached_item is not None:
            for segment_id in _item_segment_ids(cached_item):
                add(segment_id, "cached_trip")

        for passenger in passengers:
            for seat in passenger.selected_seats:
                add(seat.segment_id, "passenger_seat")

        for item in live_items:
            for segment in item.get("segments") or []:
                if isinstance(segment, dict) and segment.get("id"):
                    add(str(segment["id"]), "cart_segment")

        if not ticket_types:
            logger.warning("No segments found for ticket types; using default entry")
            ticket_types[DEFAULT_SEGMENT_KEY] = ETICKET
            sources[DEFAULT_SEGMENT_KEY] = "default"

        logger.debug("Resolved ticket types", extra={"ticket_type_sources": sources})
        return ticket_types
