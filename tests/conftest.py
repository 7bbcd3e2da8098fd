from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.database import Base
import src.models  # noqa: F401
from src.checkout.agent_service import AgentAttributionResolver
from src.checkout.exceptions import InvoicingError, ProviderError
from src.checkout.identity_service import CartIdentityResolver
from src.checkout.invoice_service import InvoiceBuilder
from src.checkout.orchestrator import PurchaseOrchestrator
from src.checkout.pricing import PriceAdjuster
from src.stores.cart_repository import SqlCartRepository
from src.stores.document_store import SqlDocumentStore


TRIP_ID = "trip-out"
RETURN_TRIP_ID = "trip-back"
CART_ID = "busbud-cart-1"


class FakeProvider:
    """Records provider calls in order; responses and failures are configurable"""

    def __init__(self, cart: Optional[Dict[str, Any]] = None):
        self.cart = cart if cart is not None else sample_cart()
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.responses: Dict[str, Any] = {
            "update_trip_passengers": {"retail_price": {"total": 5000, "currency": "USD", "items": [{}]}},
            "update_purchaser_details": {"purchaser": {"ok": True}},
            "get_latest_charges": {"total": 5000, "currency": "USD", "items": [{}]},
            "put_latest_charges": {"accepted": True},
        }

    def _respond(self, step: str, *args):
        self.calls.append((step,) + args)
        if step in self.failures:
            raise self.failures[step]
        return self.responses.get(step)

    def get_cart(self, cart_id, bypass_cache=False):
        self.calls.append(("get_cart", cart_id, bypass_cache))
        if "get_cart" in self.failures:
            raise self.failures["get_cart"]
        return self.cart

    def update_trip_passengers(self, cart_id, trip_id, options, passengers, ticket_types):
        key = f"update_trip_passengers:{trip_id}"
        self.calls.append(("update_trip_passengers", cart_id, trip_id, options, passengers, ticket_types))
        if key in self.failures:
            raise self.failures[key]
        return self.responses["update_trip_passengers"]

    def update_purchaser_details(self, cart_id, purchaser):
        return self._respond("update_purchaser_details", cart_id, purchaser)

    def get_latest_charges(self, cart_id):
        return self._respond("get_latest_charges", cart_id)

    def put_latest_charges(self, cart_id, charges):
        return self._respond("put_latest_charges", cart_id, charges)

    @property
    def steps(self) -> List[str]:
        return [c[0] for c in self.calls]

    def fail(self, step: str, message: str = "provider unavailable") -> None:
        self.failures[step] = ProviderError(message, step=step.split(":")[0], response={"error": message})


class FakeInvoicing:
    def __init__(self, post_result: bool = True, post_error: bool = False):
        self.partners: List[Dict[str, Any]] = []
        self.invoices: Dict[int, Dict[str, Any]] = {}
        self.posted: List[int] = []
        self.post_result = post_result
        self.post_error = post_error

    def find_or_create_partner(self, name, email="", phone=""):
        self.partners.append({"name": name, "email": email, "phone": phone})
        return 7

    def find_or_create_invoice(self, partner_id, payment_reference, lines, expiry=None):
        for invoice_id, invoice in self.invoices.items():
            if invoice["payment_reference"] == payment_reference:
                invoice.update(lines=lines, expiry=expiry)
                return invoice_id
        invoice_id = 100 + len(self.invoices)
        self.invoices[invoice_id] = {
            "partner_id": partner_id,
            "payment_reference": payment_reference,
            "lines": lines,
            "expiry": expiry,
        }
        return invoice_id

    def post_invoice(self, invoice_id):
        if self.post_error:
            raise InvoicingError(f"action_post failed for {invoice_id}")
        if self.post_result:
            self.posted.append(invoice_id)
        return self.post_result


class FakeAgents:
    def __init__(self, agents: Optional[Dict[str, Dict[str, Any]]] = None):
        self.agents = agents or {}
        self.lookups: List[str] = []

    def get_agent(self, agent_id):
        self.lookups.append(agent_id)
        return self.agents.get(agent_id)


def sample_cart(questions=("gender", "dob")) -> Dict[str, Any]:
    return {
        "id": CART_ID,
        "items": [
            {
                "trip_id": TRIP_ID,
                "segments": [
                    {
                        "id": "seg-out-1",
                        "origin": {"name": "Harare Roadport", "city": {"name": "Harare"}},
                        "destination": {"name": "Bulawayo Terminal", "city": {"name": "Bulawayo"}},
                        "departure_time": {"timestamp": "2026-11-02T08:30:00+00:00"},
                        "arrival_time": {"timestamp": "2026-11-02T14:45:00+00:00"},
                    }
                ],
                "passenger_questions": [{"question_key": q} for q in questions],
            }
        ],
    }


def sample_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "busbudCartId": CART_ID,
        "tripId": TRIP_ID,
        "passengers": [
            {
                "firstName": "Tendai",
                "lastName": "Moyo",
                "gender": "F",
                "dateOfBirth": "1990-04-12T00:00:00Z",
            }
        ],
        "contactInfo": {
            "firstName": "Tendai",
            "lastName": "Moyo",
            "email": "tendai@example.com",
            "phone": "+263771234567",
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def documents(session_factory):
    return SqlDocumentStore(session_factory)


@pytest.fixture
def carts(session_factory):
    return SqlCartRepository(session_factory)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def invoicing():
    return FakeInvoicing()


@pytest.fixture
def agents():
    return FakeAgents({
        "agent-001": {"id": "agent-001", "email": "Desk@Example.com", "name": "Harare Desk", "branch_code": "03"},
    })


@pytest.fixture
def orchestrator(provider, documents, carts, agents, invoicing):
    return PurchaseOrchestrator(
        provider=provider,
        documents=documents,
        carts=carts,
        identity=CartIdentityResolver(documents, carts),
        agents=AgentAttributionResolver(agents),
        invoices=InvoiceBuilder(documents, carts, adjuster=PriceAdjuster()),
        invoicing_factory=lambda: invoicing,
    )


@pytest.fixture
def plain_adjuster():
    return PriceAdjuster(apply=False, round_to_nearest=Decimal("0"))
