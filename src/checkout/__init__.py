"""
Checkout Module

This module turns a frontend checkout request for a Busbud cart into a cart
that is ready for payment, or into a posted pay-later invoice. It includes:

- Durable cart identity minting, idempotent per provider cart
- Passenger question schema discovery from the live cart
- Passenger and purchaser mapping into the provider's shape
- Segment ticket type resolution
- Sales agent attribution
- Ordered provider calls (passengers, purchaser, charges)
- Hold invoices with price adjustment and expiry resolution

Key Components:
- identity_service.py: Durable cart ids and branch codes
- question_service.py: Required passenger question discovery
- passenger_service.py: Passenger and purchaser mapping and validation
- ticket_types.py: Segment to ticket type map
- agent_service.py: Agent attribution chain
- pricing.py: Retail price adjustment rule
- invoice_service.py: Hold invoice creation, posting and recording
- orchestrator.py: The checkout sequence itself
- dependencies.py: FastAPI dependency wiring
- router.py: FastAPI endpoints
- schemas.py: Pydantic request, response and domain models
- exceptions.py: Typed checkout errors with stable codes
"""

from .orchestrator import PurchaseOrchestrator, PurchaseState
from .identity_service import CartIdentityResolver
from .question_service import QuestionSchemaExtractor
from .passenger_service import PassengerMapper
from .ticket_types import SegmentTicketTypeResolver
from .agent_service import AgentAttributionResolver
from .pricing import PriceAdjuster, PriceAdjustment
from .invoice_service import InvoiceBuilder, TripDetailExtractor
from .schemas import (
    CartStatus, InvoiceStatus, CheckoutRequest, CheckoutResponse, ContactInfo,
    MappedPassenger, Purchaser, RequestContext, QuestionSchema, AgentAttribution,
    InvoiceSummary, CartDocumentResponse
)
from .exceptions import (
    CheckoutError, CheckoutValidationError, PassengerQuestionsUnansweredError,
    AgentContextMissingError, ProviderError, StoreError, InvoicingError,
    InvoicePostingError, ConfigurationError
)

__all__ = [
    "PurchaseOrchestrator",
    "PurchaseState",
    "CartIdentityResolver",
    "QuestionSchemaExtractor",
    "PassengerMapper",
    "SegmentTicketTypeResolver",
    "AgentAttributionResolver",
    "PriceAdjuster",
    "PriceAdjustment",
    "InvoiceBuilder",
    "TripDetailExtractor",
    "CartStatus",
    "InvoiceStatus",
    "CheckoutRequest",
    "CheckoutResponse",
    "ContactInfo",
    "MappedPassenger",
    "Purchaser",
    "RequestContext",
    "QuestionSchema",
    "AgentAttribution",
    "InvoiceSummary",
    "CartDocumentResponse",
    "CheckoutError",
    "CheckoutValidationError",
    "PassengerQuestionsUnansweredError",
    "AgentContextMissingError",
    "ProviderError",
    "StoreError",
    "InvoicingError",
    "InvoicePostingError",
    "ConfigurationError",
]
