"""Typed errors for the checkout pipeline.

Every error carries a stable ``code`` and the HTTP status the router should
answer with. Input problems are 400-class; anything raised by the provider,
the stores or the invoicing service is 500-class and is never retried
automatically, since earlier provider calls are not rolled back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class CheckoutError(Exception):
    """Base error for the checkout pipeline.

    Attributes:
        message: Human-readable error description
        cause: Optional underlying exception that caused this error
    """

    message: str
    cause: Optional[Exception] = field(default=None, repr=False)

    code = "CHECKOUT_ERROR"
    status_code = 500

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_details(self) -> Any:
        return str(self)


@dataclass
class CheckoutValidationError(CheckoutError):
    """Request body failed boundary validation.

    Attributes:
        errors: One entry per offending field, e.g.
            ``{"field": "passengers[0].firstName", "message": "..."}``
    """

    errors: List[Dict[str, Any]] = field(default_factory=list)

    code = "VALIDATION_FAILED"
    status_code = 400

    def to_details(self) -> Any:
        return self.errors


@dataclass
class PassengerQuestionsUnansweredError(CheckoutError):
    """A required passenger question has no answer.

    Attributes:
        question_key: Normalized key of the unanswered question
        passenger_index: 1-based index of the first passenger missing it
    """

    question_key: str = ""
    passenger_index: int = 0

    code = "PASSENGER_QUESTIONS_UNANSWERED"
    status_code = 400

    def to_details(self) -> Any:
        return {"key": self.question_key, "index": self.passenger_index}


@dataclass
class AgentContextMissingError(CheckoutError):
    """Agent mode was asserted but no agent email could be resolved."""

    agent_id: Optional[str] = None

    code = "AGENT_CONTEXT_MISSING"
    status_code = 400

    def to_details(self) -> Any:
        return {"agentId": self.agent_id}


@dataclass
class ProviderError(CheckoutError):
    """The trip-booking provider returned an error or could not be reached.

    Attributes:
        step: Orchestration step that failed
        response: Error payload returned by the provider, if any
    """

    step: str = ""
    response: Optional[Any] = field(default=None, repr=False)

    code = "PROVIDER_ERROR"


@dataclass
class StoreError(CheckoutError):
    """A document or relational store operation failed."""

    store: str = ""

    code = "STORE_ERROR"


@dataclass
class InvoicingError(CheckoutError):
    """The invoicing service rejected a call or invoice data was incomplete."""

    code = "INVOICING_ERROR"


@dataclass
class InvoicePostingError(InvoicingError):
    """Invoice was created but could not be posted.

    The invoice id is kept on the cart document so it can be reconciled by
    hand.
    """

    invoice_id: Optional[int] = None

    code = "INVOICE_POSTING_FAILED"

    def to_details(self) -> Any:
        return {"message": str(self), "invoiceId": self.invoice_id}


@dataclass
class ConfigurationError(CheckoutError):
    """Invalid or missing configuration.

    Attributes:
        setting_names: Settings that are missing or invalid
    """

    setting_names: List[str] = field(default_factory=list)

    code = "CONFIGURATION_ERROR"
