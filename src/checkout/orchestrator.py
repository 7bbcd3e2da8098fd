import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from src.ports import CartRepository, DocumentStore, InvoicingService, TripProvider
from src.checkout.agent_service import AgentAttributionResolver
from src.checkout.exceptions import ProviderError, StoreError
from src.checkout.identity_service import CartIdentityResolver
from src.checkout.invoice_service import InvoiceBuilder
from src.checkout.passenger_service import PassengerMapper
from src.checkout.question_service import QuestionSchemaExtractor
from src.checkout.schemas import (
    AgentAttribution, CartStatus, CheckoutRequest, CheckoutResponse, MappedPassenger,
    Purchaser, RequestContext
)
from src.checkout.ticket_types import SegmentTicketTypeResolver

logger = logging.getLogger(__name__)

PASSENGER_UPDATE_OPTIONS = {
    "locale": "en-US",
    "currency": "USD",
    "save_passenger_question_answers": True,
}


class PurchaseState(str, Enum):
    MAPPING = "mapping"
    PASSENGERS_SUBMITTED = "passengers_submitted"
    PURCHASER_SUBMITTED = "purchaser_submitted"
    CHARGES_FETCHED = "charges_fetched"
    CHARGES_ACCEPTED = "charges_accepted"
    AWAITING_PAYMENT = "awaiting_payment"
    INVOICE_POSTED = "invoice_posted"


def next_steps(provider_cart_id: str) -> List[str]:
    return [
        "Proceed with payment to complete your booking",
        "You will receive a confirmation once payment is processed",
        f"For any issues, please contact support with your cart ID: {provider_cart_id}",
    ]


class PurchaseOrchestrator:
    """Runs one checkout: identity, mapping, ordered provider calls, then hold invoice or awaiting payment"""

    def __init__(
        self,
        provider: TripProvider,
        documents: DocumentStore,
        carts: CartRepository,
        identity: CartIdentityResolver,
        agents: AgentAttributionResolver,
        invoices: InvoiceBuilder,
        invoicing_factory: Callable[[], InvoicingService],
        questions: Optional[QuestionSchemaExtractor] = None,
        mapper: Optional[PassengerMapper] = None,
        ticket_types: Optional[SegmentTicketTypeResolver] = None,
    ):
        self.provider = provider
        self.documents = documents
        self.carts = carts
        self.identity = identity
        self.agents = agents
        self.invoices = invoices
        self.invoicing_factory = invoicing_factory
        self.questions = questions or QuestionSchemaExtractor()
        self.mapper = mapper or PassengerMapper()
        self.ticket_types = ticket_types or SegmentTicketTypeResolver()
        self.state = PurchaseState.MAPPING

    def checkout(self, request: CheckoutRequest, context: RequestContext) -> CheckoutResponse:
        cart_id = request.cart_id
        log_context = {"provider_cart_id": cart_id, "trip_id": request.trip_id, "hold": request.hold}
        logger.info("Checkout started", extra=log_context)

        # Without a durable id nothing below may touch the provider
        durable_id = self.identity.resolve(cart_id, request.branch_hint)
        log_context["durable_cart_id"] = durable_id

        # Hold checkouts need invoicing credentials before any provider mutation
        invoicing = self.invoicing_factory() if request.hold else None

        live_cart = self._load_live_cart(cart_id)
        cart_document = self.documents.get(durable_id) or {}

        schema = self.questions.extract(live_cart, request.trip_ids)
        purchaser = self.mapper.map_purchaser(request.contact_info)
        passengers = self.mapper.map_passengers(
            request.passengers, request.contact_info, schema, live_cart, request.trip_id
        )
        self.mapper.validate_required_answers(passengers, schema)

        ticket_types = self.ticket_types.resolve(live_cart, passengers, cart_document)
        attribution = self.agents.resolve(context, cart_document)
        self._record_attribution(durable_id, attribution, cart_document)
        self._record_trip_selection(cart_id, request.trip_id, live_cart)

        passenger_payload = [p.model_dump() for p in passengers]
        outbound_response = self._call(
            "update_trip_passengers",
            lambda: self.provider.update_trip_passengers(
                cart_id, request.trip_id, PASSENGER_UPDATE_OPTIONS, passenger_payload, ticket_types
            ),
        )
        self._mirror_passengers(durable_id, cart_id, request, purchaser, passengers, outbound_response)

        if request.return_trip_id:
            try:
                self._call(
                    "update_return_trip_passengers",
                    lambda: self.provider.update_trip_passengers(
                        cart_id, request.return_trip_id, PASSENGER_UPDATE_OPTIONS, passenger_payload, ticket_types
                    ),
                )
            except ProviderError:
                logger.error(
                    "Return trip submission failed after outbound succeeded; outbound update is not compensated",
                    extra={**log_context, "return_trip_id": request.return_trip_id}
                )
                raise
        self.state = PurchaseState.PASSENGERS_SUBMITTED

        purchaser_response = self._call(
            "update_purchaser_details",
            lambda: self.provider.update_purchaser_details(cart_id, purchaser.model_dump()),
        )
        self._mirror(
            durable_id,
            {"purchaserDetails": purchaser.model_dump(), "purchaserResponse": purchaser_response},
            cart_fields={"purchaser": purchaser.model_dump(), "purchaser_response": purchaser_response},
        )
        self.state = PurchaseState.PURCHASER_SUBMITTED

        charges = self._call(
            "get_latest_charges", lambda: self.provider.get_latest_charges(cart_id), require_body=True
        )
        self.state = PurchaseState.CHARGES_FETCHED

        accepted = self._call("put_latest_charges", lambda: self.provider.put_latest_charges(cart_id, charges))
        self._mirror(
            durable_id,
            {"charges": charges, "acceptedCharges": accepted},
            cart_fields={"charges": charges, "accepted_charges": accepted},
        )
        self.state = PurchaseState.CHARGES_ACCEPTED

        if request.hold:
            invoice = self.invoices.issue(
                invoicing, durable_id, cart_id, request.trip_id, purchaser, passengers,
                outbound_response, charges, live_cart, attribution,
            )
            self.state = PurchaseState.INVOICE_POSTED
            logger.info("Checkout completed with hold invoice", extra={**log_context, "invoice_id": invoice.id})
            return CheckoutResponse(
                message="Invoice created and posted",
                cart_id=cart_id,
                durable_cart_id=durable_id,
                status=self._persisted_status(durable_id),
                invoice=invoice,
                next_steps=next_steps(cart_id),
            )

        self._mark_awaiting_payment(durable_id, cart_id, attribution)
        self.state = PurchaseState.AWAITING_PAYMENT
        logger.info("Checkout completed; awaiting payment", extra=log_context)
        return CheckoutResponse(
            message="Cart is ready for payment processing",
            cart_id=cart_id,
            durable_cart_id=durable_id,
            status=self._persisted_status(durable_id),
            next_steps=next_steps(cart_id),
        )

    def _call(self, step: str, call: Callable[[], Any], require_body: bool = False) -> Dict[str, Any]:
        """Run one provider call; an error object (or a missing required body) aborts the checkout"""
        try:
            response = call()
        except ProviderError as e:
            e.step = step
            raise

        if (require_body and not response) or (isinstance(response, dict) and response.get("error")):
            logger.error("Provider returned an error", extra={"step": step})
            raise ProviderError(f"Provider step {step} returned an error", step=step, response=response)

        logger.debug("Provider step succeeded", extra={"step": step})
        return response or {}

    def _load_live_cart(self, cart_id: str) -> Dict[str, Any]:
        try:
            return self.provider.get_cart(cart_id, bypass_cache=True) or {"id": cart_id, "items": []}
        except ProviderError:
            logger.warning("Could not load live cart; continuing without it", exc_info=True, extra={"provider_cart_id": cart_id})
            return {"id": cart_id, "items": []}

    def _record_attribution(
        self, durable_id: str, attribution: AgentAttribution, cart_document: Dict[str, Any]
    ) -> None:
        if not attribution.is_attributed:
            return
        try:
            if not cart_document.get("agentEmail"):
                self.documents.set(durable_id, {
                    "agentMode": True,
                    "agentId": attribution.agent_id,
                    "agentEmail": attribution.agent_email,
                    "agentName": attribution.agent_name,
                })
            self.carts.upsert_cart(durable_id, booked_by=attribution.booked_by)
        except StoreError:
            logger.warning("Failed to persist agent attribution", exc_info=True, extra={"durable_cart_id": durable_id})

    def _record_trip_selection(self, cart_id: str, trip_id: str, live_cart: Dict[str, Any]) -> None:
        if not live_cart.get("items"):
            return
        try:
            if self.carts.latest_trip_selection(cart_id) is None:
                self.carts.record_trip_selection(cart_id, trip_id, live_cart)
        except StoreError:
            logger.warning("Failed to record trip selection", exc_info=True, extra={"provider_cart_id": cart_id})

    def _mirror_passengers(
        self,
        durable_id: str,
        cart_id: str,
        request: CheckoutRequest,
        purchaser: Purchaser,
        passengers: List[MappedPassenger],
        response: Dict[str, Any],
    ) -> None:
        self._mirror(durable_id, {
            "tripId": request.trip_id,
            "returnTripId": request.return_trip_id,
            "passengers": [p.model_dump() for p in passengers],
            "purchaser": purchaser.model_dump(),
            "busbudResponse": response,
            "passengerDetails": {"busbudResponse": response},
        }, cart_fields={
            "busbud_cart_id": cart_id,
            "purchaser": purchaser.model_dump(),
            "passengers": [p.model_dump() for p in passengers],
            "passenger_count": len(passengers),
            "provider_response": response,
        })

    def _mirror(self, durable_id: str, document_fields: Dict[str, Any], cart_fields: Optional[Dict[str, Any]] = None) -> None:
        """Best-effort copy of a step's result into both stores"""
        try:
            self.documents.set(durable_id, document_fields)
            if cart_fields:
                self.carts.upsert_cart(durable_id, **cart_fields)
        except StoreError:
            logger.warning("Failed to mirror checkout step", exc_info=True, extra={"durable_cart_id": durable_id})

    def _mark_awaiting_payment(self, durable_id: str, cart_id: str, attribution: AgentAttribution) -> None:
        self.documents.set(durable_id, {"status": CartStatus.AWAITING_PAYMENT.value, "bookingReference": durable_id})
        self.carts.upsert_cart(
            durable_id,
            busbud_cart_id=cart_id,
            status=CartStatus.AWAITING_PAYMENT.value,
            booked_by=attribution.booked_by,
        )

    def _persisted_status(self, durable_id: str) -> CartStatus:
        """Status the document store kept; a confirmed or paid cart stays that way"""
        try:
            document = self.documents.get(durable_id) or {}
        except StoreError:
            logger.warning("Could not read back cart status", exc_info=True, extra={"durable_cart_id": durable_id})
            return CartStatus.AWAITING_PAYMENT
        status = document.get("status")
        if status in {s.value for s in CartStatus}:
            return CartStatus(status)
        return CartStatus.AWAITING_PAYMENT
