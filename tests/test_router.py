import pytest
from fastapi.testclient import TestClient

from conftest import CART_ID, sample_payload
from src.main import app
from src.checkout.dependencies import get_document_store, get_orchestrator


CHECKOUT_URL = "/api/v1/checkout/trips/frontend"


@pytest.fixture
def client(orchestrator, documents):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_document_store] = lambda: documents
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_checkout_success_response(client):
    response = client.post(CHECKOUT_URL, json=sample_payload())

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["cartId"] == CART_ID
    assert body["durableCartId"] == "101000001"
    assert body["status"] == "awaiting_payment"
    assert len(body["nextSteps"]) == 3


def test_hold_checkout_returns_invoice(client):
    response = client.post(CHECKOUT_URL, json=sample_payload(hold="true"))

    assert response.status_code == 200
    invoice = response.json()["invoice"]
    assert invoice["total"] == 50.0
    assert invoice["amountUntaxed"] == 50.0
    assert invoice["amountTax"] == 0.0
    assert invoice["currency"] == "USD"
    assert invoice["pnr"] == "101000001"
    assert invoice["status"] == "posted"
    assert "expiresAt" in invoice


def test_invalid_request_lists_every_problem(client, provider):
    payload = sample_payload(passengers=[{"firstName": "John"}, {}])
    del payload["tripId"]

    response = client.post(CHECKOUT_URL, json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "VALIDATION_FAILED"
    fields = [e["field"] for e in body["details"]]
    assert fields == ["tripId", "passengers[0]", "passengers[1]"]
    assert body["details"][1]["missing"] == ["lastName"]
    assert body["details"][2]["index"] == 2
    assert provider.calls == []


def test_missing_contact_info_is_rejected(client):
    payload = sample_payload()
    del payload["contactInfo"]

    response = client.post(CHECKOUT_URL, json=payload)

    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "contactInfo"


def test_snake_case_request_is_accepted(client):
    payload = sample_payload()
    payload["busbud_cart_id"] = payload.pop("busbudCartId")
    payload["trip_id"] = payload.pop("tripId")
    payload["contact_info"] = payload.pop("contactInfo")

    response = client.post(CHECKOUT_URL, json=payload)

    assert response.status_code == 200


def test_unanswered_question_response(client):
    payload = sample_payload(passengers=[{"firstName": "John", "lastName": "Doe", "gender": "M"}])

    response = client.post(CHECKOUT_URL, json=payload)

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "PASSENGER_QUESTIONS_UNANSWERED",
        "message": "PassengerQuestionsUnanswered: dob",
        "details": {"key": "dob", "index": 1},
    }


def test_agent_context_missing_response(client):
    response = client.post(CHECKOUT_URL, json=sample_payload(), headers={"X-Agent-Mode": "true"})

    assert response.status_code == 400
    assert response.json()["error"] == "AGENT_CONTEXT_MISSING"


def test_provider_failure_response(client, provider):
    provider.responses["get_latest_charges"] = {"error": "cart expired"}

    response = client.post(CHECKOUT_URL, json=sample_payload())

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "An error occurred during purchase processing"
    assert body["step"] == "get_latest_charges"
    assert body["durableCartId"] == "101000001"
    assert body["requiresAttention"] is True
    assert "timestamp" in body


def test_cart_lookup_by_reference(client):
    client.post(CHECKOUT_URL, json=sample_payload())

    response = client.get("/api/v1/checkout/carts/reference/101000001")

    assert response.status_code == 200
    body = response.json()
    assert body["durableCartId"] == "101000001"
    assert body["providerCartId"] == CART_ID
    assert body["status"] == "awaiting_payment"
    assert client.get("/api/v1/checkout/carts/reference/nope").status_code == 404


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
