from pydantic import BaseModel, ConfigDict, Field, AliasChoices, ValidationError, field_serializer, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any, Set
from datetime import datetime
from decimal import Decimal
from enum import Enum

from src.checkout.exceptions import CheckoutValidationError

class CartStatus(str, Enum):
    """Cart lifecycle status"""
    ACTIVE = "active"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    PAID = "paid"

class InvoiceStatus(str, Enum):
    """Invoice status enumeration"""
    DRAFT = "draft"
    POSTED = "posted"

TRUTHY_VALUES = {"true", "1", "yes", "on"}

def is_truthy(value: Any) -> bool:
    """Interpret header/body/query flags such as "yes" or "1" as booleans"""
    if isinstance(value, bool):
        return value
    return str(value if value is not None else "").strip().lower() in TRUTHY_VALUES

def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)

# Request Models
class ContactInfo(BaseModel):
    """Purchaser contact details, accepted in camelCase or snake_case"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    first_name: str = Field("", validation_alias=_alias("firstName", "first_name"))
    last_name: str = Field("", validation_alias=_alias("lastName", "last_name"))
    email: str = ""
    phone: str = Field("", validation_alias=_alias("phone", "phoneNumber", "phone_number"))
    opt_in_marketing: bool = Field(False, validation_alias=_alias("optInMarketing", "opt_in_marketing"))
    country: Optional[str] = None
    return_url: Optional[str] = Field(None, validation_alias=_alias("returnUrl", "return_url"))

    @field_validator("first_name", "last_name", "email", "phone", mode="before")
    @classmethod
    def _none_to_blank(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("opt_in_marketing", mode="before")
    @classmethod
    def _coerce_flag(cls, v):
        return is_truthy(v)

class CheckoutRequest(BaseModel):
    """Canonical checkout request, normalized once at the HTTP boundary"""
    model_config = ConfigDict(populate_by_name=True)

    passengers: List[Dict[str, Any]] = Field(default_factory=list)
    cart_id: Optional[str] = Field(
        None, validation_alias=_alias("busbudCartId", "busbud_cart_id", "cartId", "cart_id")
    )
    trip_id: Optional[str] = Field(None, validation_alias=_alias("tripId", "trip_id"))
    return_trip_id: Optional[str] = Field(
        None, validation_alias=_alias("returnTripId", "return_trip_id")
    )
    contact_info: Optional[ContactInfo] = Field(
        None, validation_alias=_alias("contactInfo", "contact_info")
    )
    hold: bool = False
    branch_hint: Optional[str] = Field(
        None, validation_alias=_alias("clientBranch", "client_branch", "branchCode", "branch_code")
    )

    @field_validator("cart_id", "trip_id", "return_trip_id", "branch_hint", mode="before")
    @classmethod
    def _strip_ids(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("passengers", mode="before")
    @classmethod
    def _passengers_list(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("passengers must be an array")
        return [p if isinstance(p, dict) else {} for p in v]

    @field_validator("hold", mode="before")
    @classmethod
    def _coerce_hold(cls, v):
        # Only an explicit true / "true" requests pay-later semantics
        return v is True or (isinstance(v, str) and v.strip().lower() == "true")

    @property
    def trip_ids(self) -> List[str]:
        return [t for t in (self.trip_id, self.return_trip_id) if t]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CheckoutRequest":
        """Parse and validate a raw body, raising an itemized CheckoutValidationError"""
        if not isinstance(payload, dict):
            raise CheckoutValidationError(
                "Request body must be a JSON object",
                errors=[{"field": "body", "message": "Expected a JSON object"}]
            )

        try:
            request = cls.model_validate(payload)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise CheckoutValidationError("Invalid checkout request", errors=errors)

        errors = request.validation_errors()
        if errors:
            raise CheckoutValidationError(errors[0]["message"], errors=errors)
        return request

    def validation_errors(self) -> List[Dict[str, Any]]:
        errors = []

        if not self.cart_id:
            errors.append({"field": "busbudCartId", "message": "busbudCartId is required"})

        if not self.trip_id:
            errors.append({"field": "tripId", "message": "tripId or trip_id is required"})

        if not self.passengers:
            errors.append({"field": "passengers", "message": "No passengers provided"})

        if self.contact_info is None:
            errors.append({
                "field": "contactInfo",
                "message": "contactInfo (camelCase) or contact_info (snake_case) is required and "
                           "must include: firstName, lastName, email, phone"
            })

        for index, passenger in enumerate(self.passengers):
            missing = [
                name for name, snake in (("firstName", "first_name"), ("lastName", "last_name"))
                if not passenger.get(name) and not passenger.get(snake)
            ]
            if missing:
                errors.append({
                    "field": f"passengers[{index}]",
                    "index": index + 1,
                    "message": f"Missing required fields for passenger {index + 1}",
                    "missing": missing,
                    "received": sorted(passenger.keys())
                })

        return errors

# Provider-shaped passenger & purchaser
class SelectedSeat(BaseModel):
    segment_id: str
    seat_id: str

class PassengerAnswer(BaseModel):
    question_key: str
    value: str

class PassengerAddress(BaseModel):
    address1: str = "123 Casgrain Ave"
    address2: str = "Suite 300"
    city: str = "Montreal"
    postcode: str = "H1B 0X3"
    country_code: str = "CA"
    province: str = "QC"

class MappedPassenger(BaseModel):
    """Passenger record in the shape the trip-booking provider expects"""
    id: int
    first_name: str
    last_name: str
    category: str = "adult"
    age: int = 25
    wheelchair: bool = False
    discounts: List[Any] = Field(default_factory=list)
    phone: str
    address: PassengerAddress = Field(default_factory=PassengerAddress)
    selected_seats: List[SelectedSeat]
    answers: List[PassengerAnswer] = Field(default_factory=list)

    def answer_for(self, key: str) -> Optional[str]:
        for answer in self.answers:
            if answer.question_key == key and answer.value.strip():
                return answer.value
        return None

class Purchaser(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    opt_in_marketing: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

# Derived contracts
class RequestContext(BaseModel):
    """Request inputs the agent attribution chain reads from"""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)
    query: Dict[str, str] = Field(default_factory=dict)
    context_email: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name.lower())
        return value.strip() if isinstance(value, str) and value.strip() else None

class QuestionSchema(BaseModel):
    """Passenger questions a trip requires; every discovered key is required"""
    required: List[str] = Field(default_factory=list)
    optional: List[str] = Field(default_factory=list)
    all: List[str] = Field(default_factory=list)

    @property
    def allowed_keys(self) -> Optional[Set[str]]:
        """Keys that may be submitted, or None when no schema was discovered"""
        return set(self.all) if self.all else None

    @property
    def required_keys(self) -> List[str]:
        return list(self.required)

class AgentAttribution(BaseModel):
    """Which sales agent, if any, is credited for a booking"""
    agent_mode: bool = False
    agent_id: Optional[str] = None
    agent_email: Optional[str] = None
    agent_name: Optional[str] = None
    source: Optional[str] = None

    @property
    def is_attributed(self) -> bool:
        return bool(self.agent_email)

    @property
    def booked_by(self) -> Optional[str]:
        if not self.is_attributed:
            return None
        return (self.agent_name or "").strip() or self.agent_email

class TripDetails(BaseModel):
    """One leg of the itinerary as shown on the invoice"""
    origin: str = "Unknown"
    origin_city: str = "Unknown"
    destination: str = "Unknown"
    destination_city: str = "Unknown"
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    operator: str = "Unknown"
    vehicle_type: str = "Bus"

# Response Models
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class InvoiceSummary(CamelModel):
    """Invoice metadata cached on the cart"""
    id: int
    pnr: str
    number: str
    total: Decimal
    amount_untaxed: Decimal
    amount_tax: Decimal = Decimal("0")
    currency: str
    expires_at: datetime
    status: InvoiceStatus = InvoiceStatus.DRAFT

    @field_serializer("total", "amount_untaxed", "amount_tax")
    def _amount_as_number(self, amount: Decimal) -> float:
        return float(amount)

class CheckoutResponse(CamelModel):
    success: bool = True
    message: str
    cart_id: str
    durable_cart_id: str
    status: CartStatus
    invoice: Optional[InvoiceSummary] = None
    next_steps: List[str] = Field(default_factory=list)

class CartDocumentResponse(CamelModel):
    durable_cart_id: str
    provider_cart_id: Optional[str] = None
    booking_reference: Optional[str] = None
    status: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
