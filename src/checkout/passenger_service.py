import logging
import re
from typing import Any, Dict, List, Optional, Set

from src.checkout.exceptions import PassengerQuestionsUnansweredError
from src.checkout.question_service import normalize_question_key
from src.checkout.resolvers import NOT_FOUND, Resolved, dig, first_of, is_blank
from src.checkout.schemas import (
    ContactInfo, MappedPassenger, PassengerAddress, PassengerAnswer, Purchaser,
    QuestionSchema, SelectedSeat
)

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_ID = "default-segment"
SUPPORT_PHONE = "+1 (438) 501-4388"
DEFAULT_COUNTRY_CODE = "CA"

_DIGITS = re.compile(r"\d+")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_ID_TYPE_ALIASES = {
    "passport": "passport",
    "national_id": "national_id",
    "nationalid": "national_id",
    "nat_id": "national_id",
    "id": "national_id",
    "id_card": "id_card",
    "idcard": "id_card",
    "identity_card": "id_card",
    "identitycard": "id_card",
    "drivers_license": "drivers_license",
    "driver_license": "drivers_license",
    "driving_license": "drivers_license",
    "driverslicence": "drivers_license",
}


# ================================
# Value normalizers
# ================================

def normalize_gender(value: Any) -> str:
    text = str(value if value is not None else "").strip().lower()
    if text in ("m", "male", "man"):
        return "male"
    if text in ("f", "female", "woman"):
        return "female"
    return text


def normalize_dob(value: Any) -> str:
    text = str(value if value is not None else "").strip()
    return text[:10] if "T" in text else text


def normalize_id_type(value: Any) -> str:
    text = str(value if value is not None else "").strip().lower()
    if not text:
        return ""
    text = _NON_ALNUM.sub("_", text).strip("_")
    return _ID_TYPE_ALIASES.get(text, text)


_VALUE_NORMALIZERS = {
    "gender": normalize_gender,
    "dob": normalize_dob,
    "id_type": normalize_id_type,
}


# ================================
# Fallback chains
# ================================

def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or is_blank(value):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number > 0 and number.is_integer():
        return int(number)
    return None


def resolve_passenger_id(passenger: Dict[str, Any], index: int) -> Resolved[int]:
    """idNumber, then id, then digits inside either, then the 1-based position"""
    for key in ("idNumber", "id"):
        number = _positive_int(passenger.get(key))
        if number is not None:
            return Resolved(number, key)

    raw = passenger.get("idNumber") or passenger.get("id")
    if isinstance(raw, str):
        match = _DIGITS.search(raw)
        if match and int(match.group(0)) > 0:
            return Resolved(int(match.group(0)), "digits")

    return Resolved(index + 1, "position")


def resolve_segment_id(
    passenger: Dict[str, Any],
    cart: Optional[Dict[str, Any]],
    trip_id: Optional[str],
) -> Resolved[str]:
    seat_segment = dig(passenger, "selected_seats", 0, "segment_id")
    if not is_blank(seat_segment):
        return Resolved(str(seat_segment), "selected_seats")

    explicit = first_of(passenger, ("segmentId", "segment_id", "segment"))
    if explicit.found:
        return Resolved(str(explicit.value), explicit.source)

    item = matching_cart_item(cart, trip_id)
    cart_segment = dig(item, "segments", 0, "id")
    if not is_blank(cart_segment):
        return Resolved(str(cart_segment), "cart_item")

    return Resolved(DEFAULT_SEGMENT_ID, "default")


def resolve_seat_id(passenger: Dict[str, Any], index: int) -> Resolved[str]:
    seat = dig(passenger, "selected_seats", 0, "seat_id")
    if not is_blank(seat):
        return Resolved(str(seat), "selected_seats")

    explicit = first_of(passenger, ("seat_id", "seatId"))
    if explicit.found:
        return Resolved(str(explicit.value), explicit.source)

    return Resolved(f"A{index + 1}", "position")


def matching_cart_item(cart: Optional[Dict[str, Any]], trip_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Line item for ``trip_id``, else the cart's first item"""
    items = cart.get("items") if isinstance(cart, dict) else None
    if not isinstance(items, list) or not items:
        return None
    for item in items:
        if isinstance(item, dict) and trip_id and item.get("trip_id") == trip_id:
            return item
    return items[0] if isinstance(items[0], dict) else None


def _document_field(passenger: Dict[str, Any], *keys: str) -> Resolved:
    document = passenger.get("document")
    found = first_of(document, keys) if isinstance(document, dict) else NOT_FOUND
    return Resolved(found.value, f"document.{found.source}") if found.found else NOT_FOUND


def _chain(*resolved: Resolved) -> Resolved:
    for candidate in resolved:
        if candidate.found:
            return candidate
    return NOT_FOUND


# Fields injected as answers when the passenger has not answered them directly
_ANSWER_SOURCES = {
    "gender": lambda p: first_of(p, ("gender", "sex", "gender_identity")),
    "dob": lambda p: first_of(p, ("dateOfBirth", "dob", "date_of_birth")),
    "id_type": lambda p: first_of(p, ("idType", "id_type", "id_type_code")),
    "id_number": lambda p: _chain(
        first_of(p, ("idNumber", "id_number")),
        _document_field(p, "number", "id_number"),
    ),
    "nationality": lambda p: _chain(
        first_of(p, ("nationality", "nationality_code")),
        _document_field(p, "nationality", "nationality_code"),
    ),
}


def _raw_answers(passenger: Dict[str, Any]) -> List[PassengerAnswer]:
    answers = []
    for raw in passenger.get("answers") or []:
        if not isinstance(raw, dict):
            continue
        key = first_of(raw, ("question_key", "questionKey", "key", "question"))
        value = first_of(raw, ("value", "answer", "response"))
        if not key.found or not value.found:
            continue
        normalized = normalize_question_key(key.value)
        if normalized:
            answers.append(PassengerAnswer(question_key=normalized, value=str(value.value).strip()))
    return answers


def build_answers(passenger: Dict[str, Any], allowed_keys: Optional[Set[str]]) -> List[PassengerAnswer]:
    """Raw answers plus injected identity fields, normalized and filtered to the allowed keys"""
    answers = [
        a for a in _raw_answers(passenger)
        if allowed_keys is None or a.question_key in allowed_keys
    ]

    answered = {a.question_key for a in answers}
    for key, source in _ANSWER_SOURCES.items():
        if key in answered:
            continue
        if allowed_keys is not None and key not in allowed_keys:
            continue
        resolved = source(passenger)
        if resolved.found:
            answers.append(PassengerAnswer(question_key=key, value=str(resolved.value).strip()))

    result: List[PassengerAnswer] = []
    seen: Set[str] = set()
    for answer in answers:
        normalizer = _VALUE_NORMALIZERS.get(answer.question_key)
        value = normalizer(answer.value) if normalizer else answer.value.strip()
        if not value or answer.question_key in seen:
            continue
        if allowed_keys is not None and answer.question_key not in allowed_keys:
            continue
        seen.add(answer.question_key)
        result.append(PassengerAnswer(question_key=answer.question_key, value=value))
    return result


# ================================
# Mapper
# ================================

class PassengerMapper:
    """Maps raw passenger and contact input into provider-shaped records"""

    def map_purchaser(self, contact: ContactInfo) -> Purchaser:
        return Purchaser(
            first_name=contact.first_name,
            last_name=contact.last_name,
            email=contact.email,
            phone=contact.phone,
            opt_in_marketing=contact.opt_in_marketing,
        )

    def map_passengers(
        self,
        passengers: List[Dict[str, Any]],
        contact: ContactInfo,
        schema: QuestionSchema,
        cart: Optional[Dict[str, Any]] = None,
        trip_id: Optional[str] = None,
    ) -> List[MappedPassenger]:
        """Map every passenger in input order; ids are unique within the request"""
        allowed_keys = schema.allowed_keys
        used_ids: Set[int] = set()
        mapped = []

        for index, raw in enumerate(passengers):
            passenger = self.map_passenger(raw, index, contact, allowed_keys, cart, trip_id)
            if passenger.id in used_ids:
                replacement = max(used_ids) + 1
                logger.warning(
                    "Duplicate passenger id; assigning next free id",
                    extra={"passenger_index": index + 1, "duplicate_id": passenger.id, "assigned_id": replacement}
                )
                passenger = passenger.model_copy(update={"id": replacement})
            used_ids.add(passenger.id)
            mapped.append(passenger)

        return mapped

    def map_passenger(
        self,
        raw: Dict[str, Any],
        index: int,
        contact: ContactInfo,
        allowed_keys: Optional[Set[str]],
        cart: Optional[Dict[str, Any]] = None,
        trip_id: Optional[str] = None,
    ) -> MappedPassenger:
        passenger_id = resolve_passenger_id(raw, index)
        segment = resolve_segment_id(raw, cart, trip_id)
        seat = resolve_seat_id(raw, index)

        first_name = first_of(raw, ("firstName", "first_name")).value or "Unknown"
        last_name = first_of(raw, ("lastName", "last_name")).value or "Unknown"
        category = first_of(raw, ("type", "category")).value or "adult"

        logger.debug(
            "Mapped passenger",
            extra={
                "passenger_index": index + 1,
                "id_source": passenger_id.source,
                "segment_source": segment.source,
                "seat_source": seat.source,
            }
        )

        return MappedPassenger(
            id=passenger_id.value,
            first_name=str(first_name).strip(),
            last_name=str(last_name).strip(),
            category=str(category).strip(),
            phone=contact.phone or SUPPORT_PHONE,
            address=PassengerAddress(country_code=contact.country or DEFAULT_COUNTRY_CODE),
            selected_seats=[SelectedSeat(segment_id=segment.value, seat_id=seat.value)],
            answers=build_answers(raw, allowed_keys),
        )

    def validate_required_answers(self, passengers: List[MappedPassenger], schema: QuestionSchema) -> None:
        """Raise for the first passenger missing any required answer"""
        for index, passenger in enumerate(passengers):
            for key in schema.required_keys:
                if passenger.answer_for(key) is None:
                    logger.info(
                        "Passenger question unanswered",
                        extra={"question_key": key, "passenger_index": index + 1}
                    )
                    raise PassengerQuestionsUnansweredError(
                        f"PassengerQuestionsUnanswered: {key}",
                        question_key=key,
                        passenger_index=index + 1,
                    )
