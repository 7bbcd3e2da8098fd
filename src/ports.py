"""
Ports for the checkout pipeline's external collaborators.

The orchestrator only talks to these protocols; concrete adapters live in
``src.stores`` (document store, relational carts, agent directory, cart
cache) and ``src.integrations`` (trip-booking provider, invoicing service).
Tests substitute in-memory fakes.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol


class CartCachePort(Protocol):
    """TTL cache for provider cart snapshots keyed by provider cart id"""

    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[float] = None) -> None: ...

    def get_or_compute(self, key: str, compute_fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]: ...

    def invalidate(self, key: str) -> bool: ...

    def clear(self) -> int: ...

    def size(self) -> int: ...


class TripProvider(Protocol):
    """Trip-booking provider cart API"""

    def get_cart(self, cart_id: str, bypass_cache: bool = False) -> Dict[str, Any]: ...

    def update_trip_passengers(
        self,
        cart_id: str,
        trip_id: str,
        options: Dict[str, Any],
        passengers: List[Dict[str, Any]],
        ticket_types: Dict[str, str],
    ) -> Dict[str, Any]: ...

    def update_purchaser_details(self, cart_id: str, purchaser: Dict[str, Any]) -> Dict[str, Any]: ...

    def get_latest_charges(self, cart_id: str) -> Dict[str, Any]: ...

    def put_latest_charges(self, cart_id: str, charges: Dict[str, Any]) -> Dict[str, Any]: ...


class DocumentStore(Protocol):
    """Cart documents keyed by durable id"""

    def get(self, durable_id: str) -> Optional[Dict[str, Any]]: ...

    def set(self, durable_id: str, data: Dict[str, Any], merge: bool = True) -> None: ...

    def update(self, durable_id: str, fields: Dict[str, Any]) -> None: ...

    def find_by_provider_cart_id(self, provider_cart_id: str) -> Optional[str]: ...

    def find_by_booking_reference(self, booking_reference: str) -> Optional[Dict[str, Any]]: ...

    def get_or_create_durable_id(self, provider_cart_id: str, branch_hint: Optional[str] = None) -> str: ...


class CartRepository(Protocol):
    """Relational cart rows and trip-selection snapshots"""

    def upsert_cart(self, cart_id: str, **fields: Any) -> None: ...

    def get_cart(self, cart_id: str) -> Optional[Any]: ...

    def latest_trip_selection(self, provider_cart_id: str) -> Optional[Dict[str, Any]]: ...

    def record_trip_selection(self, provider_cart_id: str, trip_id: Optional[str], raw: Dict[str, Any]) -> None: ...


class AgentDirectory(Protocol):
    """Sales agent lookup"""

    def get_agent(self, agent_id: str) -> Optional[Dict[str, Any]]: ...


class InvoicingService(Protocol):
    """Customer and invoice records in the accounting system"""

    def find_or_create_partner(self, name: str, email: str, phone: str) -> int: ...

    def find_or_create_invoice(
        self,
        partner_id: int,
        payment_reference: str,
        lines: List[Any],
        expiry: datetime,
    ) -> int: ...

    def post_invoice(self, invoice_id: int) -> bool: ...
