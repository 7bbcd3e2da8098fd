import pytest

from src.checkout.exceptions import PassengerQuestionsUnansweredError
from src.checkout.passenger_service import (
    PassengerMapper, SUPPORT_PHONE, build_answers, normalize_dob, normalize_gender,
    normalize_id_type, resolve_passenger_id, resolve_seat_id, resolve_segment_id
)
from src.checkout.schemas import ContactInfo, QuestionSchema


CONTACT = ContactInfo.model_validate({
    "email": "a@b.com", "phone": "+1555", "firstName": "Jane", "lastName": "Smith",
})


def test_minimal_passenger_gets_position_defaults():
    mapper = PassengerMapper()

    passengers = mapper.map_passengers(
        [{"firstName": "John", "lastName": "Doe"}], CONTACT, QuestionSchema(), {"id": "c1", "items": []}, "t1"
    )

    passenger = passengers[0]
    assert passenger.id == 1
    assert passenger.category == "adult"
    assert passenger.selected_seats[0].seat_id == "A1"
    assert passenger.selected_seats[0].segment_id == "default-segment"
    assert passenger.phone == "+1555"


def test_contact_without_phone_uses_support_number():
    contact = ContactInfo.model_validate({"email": "a@b.com", "firstName": "Jane", "lastName": "Smith"})

    passenger = PassengerMapper().map_passenger({"firstName": "John", "lastName": "Doe"}, 0, contact, None)

    assert passenger.phone == SUPPORT_PHONE
    assert passenger.address.country_code == "CA"


def test_missing_required_answer_fails_with_key_and_index():
    mapper = PassengerMapper()
    schema = QuestionSchema(required=["dob"], all=["dob"])
    passengers = mapper.map_passengers([{"firstName": "John", "lastName": "Doe"}], CONTACT, schema)

    with pytest.raises(PassengerQuestionsUnansweredError) as exc_info:
        mapper.validate_required_answers(passengers, schema)

    assert exc_info.value.question_key == "dob"
    assert exc_info.value.passenger_index == 1
    assert str(exc_info.value) == "PassengerQuestionsUnanswered: dob"


def test_required_answers_satisfied_by_injected_fields():
    mapper = PassengerMapper()
    schema = QuestionSchema(required=["dob", "gender"], all=["dob", "gender"])
    raw = {"firstName": "John", "lastName": "Doe", "date_of_birth": "1985-01-31T00:00:00Z", "sex": "M"}

    passengers = mapper.map_passengers([raw], CONTACT, schema)
    mapper.validate_required_answers(passengers, schema)

    assert passengers[0].answer_for("dob") == "1985-01-31"
    assert passengers[0].answer_for("gender") == "male"


def test_answers_never_leave_allowed_set():
    raw = {
        "firstName": "John",
        "lastName": "Doe",
        "gender": "female",
        "nationality": "ZW",
        "answers": [
            {"questionKey": "dateOfBirth", "value": "2000-01-01"},
            {"question_key": "seat_preference", "value": "window"},
        ],
    }

    answers = build_answers(raw, {"gender", "date_of_birth"})

    assert {a.question_key for a in answers} == {"gender", "date_of_birth"}


def test_answers_without_schema_keep_raw_and_injected():
    raw = {
        "firstName": "John",
        "lastName": "Doe",
        "idType": "Passport",
        "document": {"number": "FN123456", "nationality": "ZW"},
        "answers": [{"key": "gender", "answer": "F"}, {"key": "empty", "value": "  "}],
    }

    answers = {a.question_key: a.value for a in build_answers(raw, None)}

    assert answers == {
        "gender": "female",
        "id_type": "passport",
        "id_number": "FN123456",
        "nationality": "ZW",
    }


def test_passenger_id_resolution_is_stable_and_positive():
    assert resolve_passenger_id({"idNumber": "42"}, 0).value == 42
    assert resolve_passenger_id({"id": 7.0}, 3).value == 7
    assert resolve_passenger_id({"id": "PAX-0019"}, 0).value == 19
    assert resolve_passenger_id({"id": "abc"}, 2).value == 3
    assert resolve_passenger_id({"id": -5}, 0).source == "position"
    assert resolve_passenger_id({"id": 2.5}, 1).value == 2


def test_distinct_passengers_never_share_an_id():
    raws = [
        {"firstName": "A", "lastName": "One", "id": 1},
        {"firstName": "B", "lastName": "Two", "id": "1"},
        {"firstName": "C", "lastName": "Three"},
    ]

    passengers = PassengerMapper().map_passengers(raws, CONTACT, QuestionSchema())

    ids = [p.id for p in passengers]
    assert len(set(ids)) == 3
    assert ids[0] == 1


def test_segment_and_seat_chains():
    cart = {"items": [{"trip_id": "t2", "segments": [{"id": "seg-b"}]}, {"trip_id": "t1", "segments": [{"id": "seg-a"}]}]}

    assert resolve_segment_id({"selected_seats": [{"segment_id": "s9", "seat_id": "12C"}]}, cart, "t1").value == "s9"
    assert resolve_segment_id({"segmentId": "s5"}, cart, "t1").value == "s5"
    assert resolve_segment_id({}, cart, "t1").value == "seg-a"
    assert resolve_segment_id({}, cart, "unknown").value == "seg-b"
    assert resolve_seat_id({"selected_seats": [{"segment_id": "s9", "seat_id": "12C"}]}, 0).value == "12C"
    assert resolve_seat_id({"seatId": "4D"}, 0).value == "4D"
    assert resolve_seat_id({}, 2).value == "A3"


def test_value_normalizers():
    assert normalize_gender("F") == "female"
    assert normalize_gender("Man") == "male"
    assert normalize_gender("other") == "other"
    assert normalize_dob("1990-04-12T00:00:00Z") == "1990-04-12"
    assert normalize_dob("1990-04-12") == "1990-04-12"
    assert normalize_id_type("Drivers License") == "drivers_license"
    assert normalize_id_type("National ID") == "national_id"


def test_purchaser_mapping():
    purchaser = PassengerMapper().map_purchaser(CONTACT)

    assert purchaser.full_name == "Jane Smith"
    assert purchaser.email == "a@b.com"
    assert purchaser.opt_in_marketing is False
