import json
import xmlrpc.client
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.checkout.exceptions import InvoicingError, ProviderError
from src.integrations.busbud_client import BusbudClient
from src.integrations.odoo_client import OdooInvoicingClient, as_line_command, format_expiry
from src.stores.cache import CartCache


BASE_URL = "https://busbud.test"


def _client(handler, cache=None):
    http = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return BusbudClient(BASE_URL, "token-123", cache=cache or CartCache(), http_client=http)


# Busbud

def test_get_cart_uses_cache_unless_bypassed():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "c1", "items": []})

    client = _client(handler)

    assert client.get_cart("c1") == {"id": "c1", "items": []}
    client.get_cart("c1")
    assert len(requests) == 1

    client.get_cart("c1", bypass_cache=True)
    assert len(requests) == 2
    assert requests[0].headers["X-Busbud-Token"] == "token-123"
    assert "version=3" in requests[0].headers["Accept"]


def test_update_trip_passengers_sends_body_and_invalidates_cache():
    seen = {}

    def handler(request):
        if request.method == "PUT":
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"retail_price": {"total": 5000}})
        return httpx.Response(200, json={"id": "c1"})

    cache = CartCache()
    client = _client(handler, cache)
    client.get_cart("c1")
    assert cache.size() == 1

    response = client.update_trip_passengers(
        "c1", "t1", {"locale": "en-US", "currency": "USD", "save_passenger_question_answers": True},
        [{"id": 1}], {"seg-1": "eticket"},
    )

    assert response == {"retail_price": {"total": 5000}}
    assert seen["path"] == "/carts/c1/trips/t1"
    assert seen["params"]["save_passenger_question_answers"] == "true"
    assert seen["body"] == {"passengers": [{"id": 1}], "ticket_types": {"seg-1": "eticket"}}
    assert cache.size() == 0


def test_purchaser_body_shape():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={})

    _client(handler).update_purchaser_details("c1", {"first_name": "Jane", "email": "a@b.com"})

    assert seen["body"]["purchaser"]["first_name"] == "Jane"
    assert seen["body"]["purchaser"]["opt_in_marketing"] is False


def test_http_error_becomes_provider_error():
    def handler(request):
        return httpx.Response(422, json={"error": {"code": "invalid_passenger"}})

    with pytest.raises(ProviderError) as exc_info:
        _client(handler).get_latest_charges("c1")

    assert exc_info.value.step == "get_latest_charges"
    assert exc_info.value.response == {"error": {"code": "invalid_passenger"}}


def test_transport_error_becomes_provider_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError) as exc_info:
        _client(handler).put_latest_charges("c1", {"total": 1})

    assert exc_info.value.step == "put_latest_charges"


def test_empty_body_returns_empty_dict():
    assert _client(lambda request: httpx.Response(204)).put_latest_charges("c1", {}) == {}


# Odoo

class FakeCommon:
    def __init__(self, uid=2):
        self.uid = uid

    def authenticate(self, db, username, password, context):
        return self.uid


class FakeModels:
    def __init__(self):
        self.calls = []
        self.search_results = {}
        self.state = "draft"

    def execute_kw(self, db, uid, password, model, method, args, kwargs):
        self.calls.append((model, method, args))
        if method == "search":
            return self.search_results.get(model, [])
        if method == "create":
            return 55
        if method == "read":
            return [{"state": self.state}]
        if method == "action_post":
            self.state = "posted"
            return True
        if method == "write":
            return True
        raise xmlrpc.client.Fault(1, f"unexpected {method}")


def _odoo(models=None, uid=2):
    return OdooInvoicingClient(
        "https://odoo.test/", "db", "user", "secret",
        common=FakeCommon(uid), models=models or FakeModels(),
    )


def test_line_commands_normalized():
    assert as_line_command({"name": "Trip", "x_datetime": "x"}) == [0, 0, {"name": "Trip"}]
    assert as_line_command([0, 0, {"name": "Trip"}]) == [0, 0, {"name": "Trip"}]
    assert as_line_command(["junk"]) is None
    assert format_expiry(datetime(2026, 11, 2, 10, 0, tzinfo=timezone(timedelta(hours=2)))) == "2026-11-02 08:00:00"


def test_authentication_failure():
    with pytest.raises(InvoicingError):
        _odoo(uid=False).authenticate()


def test_partner_reused_or_created():
    models = FakeModels()
    client = _odoo(models)

    assert client.find_or_create_partner("Jane Smith", "a@b.com", "+1555") == 55

    models.search_results["res.partner"] = [9]
    assert client.find_or_create_partner("Jane Smith") == 9


def test_new_invoice_requires_future_expiry():
    client = _odoo()

    with pytest.raises(InvoicingError):
        client.find_or_create_invoice(1, "101000001", [{"name": "Trip"}], datetime.now(timezone.utc) - timedelta(hours=1))


def test_invoice_created_with_expiry_and_lines():
    models = FakeModels()
    client = _odoo(models)
    expiry = datetime.now(timezone.utc) + timedelta(hours=24)

    invoice_id = client.find_or_create_invoice(1, "101000001", [[0, 0, {"name": "Trip"}]], expiry)

    assert invoice_id == 55
    model, method, args = models.calls[-1]
    assert (model, method) == ("account.move", "create")
    assert args[0]["x_datetime"] == format_expiry(expiry)
    assert args[0]["invoice_line_ids"] == [[0, 0, {"name": "Trip"}]]
    assert args[0]["move_type"] == "out_invoice"


def test_existing_invoice_is_updated():
    models = FakeModels()
    models.search_results["account.move"] = [77]
    client = _odoo(models)

    assert client.find_or_create_invoice(1, "101000001", [{"name": "Trip"}], None) == 77
    assert models.calls[-1][1] == "write"


def test_post_invoice():
    models = FakeModels()
    client = _odoo(models)

    assert client.post_invoice(55) is True
    assert client.post_invoice(55) is True
    assert [c[1] for c in models.calls].count("action_post") == 1


def test_rpc_fault_becomes_invoicing_error():
    class FaultyModels(FakeModels):
        def execute_kw(self, *args):
            raise xmlrpc.client.Fault(2, "access denied")

    with pytest.raises(InvoicingError):
        _odoo(FaultyModels()).find_or_create_partner("Jane")
