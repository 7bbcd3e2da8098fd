import logging
from typing import Any, Dict, List, Optional

import httpx

from src.checkout.exceptions import ProviderError
from src.stores.cache import CartCache

logger = logging.getLogger(__name__)

BUSBUD_ACCEPT = (
    "application/vnd.busbud+json; version=3; "
    "profile=https://schema.busbud.com/v3/anything.json"
)
DEFAULT_LOCALE = "en-US"
DEFAULT_CURRENCY = "USD"


class BusbudClient:
    """Client for the Busbud cart API (carts, passengers, purchaser, charges)"""

    def __init__(
        self,
        base_url: str,
        token: str,
        cache: Optional[CartCache] = None,
        timeout: float = 15.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.cache = cache if cache is not None else CartCache(name="busbud_carts")
        self.http = http_client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
        self.headers = {
            "X-Busbud-Token": token,
            "Accept": BUSBUD_ACCEPT,
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        self.http.close()

    def get_cart(self, cart_id: str, bypass_cache: bool = False) -> Dict[str, Any]:
        """Get cart snapshot, served from the cache unless ``bypass_cache``"""
        def fetch() -> Dict[str, Any]:
            return self._request(
                "GET", f"/carts/{cart_id}", step="get_cart",
                params={"locale": DEFAULT_LOCALE, "currency": DEFAULT_CURRENCY},
            )

        if bypass_cache:
            cart = fetch()
            self.cache.set(cart_id, cart)
            return cart
        return self.cache.get_or_compute(cart_id, fetch)

    def update_trip_passengers(
        self,
        cart_id: str,
        trip_id: str,
        options: Dict[str, Any],
        passengers: List[Dict[str, Any]],
        ticket_types: Dict[str, str],
    ) -> Dict[str, Any]:
        params = {
            "locale": options.get("locale", DEFAULT_LOCALE),
            "currency": options.get("currency", DEFAULT_CURRENCY),
        }
        if options.get("save_passenger_question_answers"):
            params["save_passenger_question_answers"] = "true"

        response = self._request(
            "PUT", f"/carts/{cart_id}/trips/{trip_id}", step="update_trip_passengers",
            params=params, json={"passengers": passengers, "ticket_types": ticket_types},
        )
        self.cache.invalidate(cart_id)
        return response

    def update_purchaser_details(self, cart_id: str, purchaser: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "purchaser": {
                "first_name": purchaser.get("first_name"),
                "last_name": purchaser.get("last_name"),
                "email": purchaser.get("email"),
                "phone": purchaser.get("phone"),
                "opt_in_marketing": bool(purchaser.get("opt_in_marketing")),
            }
        }
        return self._request(
            "PUT", f"/carts/{cart_id}/purchaser", step="update_purchaser_details",
            params={"locale": DEFAULT_LOCALE, "currency": DEFAULT_CURRENCY}, json=body,
        )

    def get_latest_charges(self, cart_id: str) -> Dict[str, Any]:
        return self._request(
            "GET", f"/carts/{cart_id}/charges", step="get_latest_charges",
            params={"locale": DEFAULT_LOCALE, "currency": DEFAULT_CURRENCY},
        )

    def put_latest_charges(self, cart_id: str, charges: Dict[str, Any]) -> Dict[str, Any]:
        response = self._request(
            "PUT", f"/carts/{cart_id}/charges", step="put_latest_charges",
            params={"locale": DEFAULT_LOCALE, "currency": DEFAULT_CURRENCY}, json=charges,
        )
        self.cache.invalidate(cart_id)
        return response

    def _request(self, method: str, path: str, step: str, **kwargs: Any) -> Dict[str, Any]:
        logger.debug("Busbud request", extra={"method": method, "path": path, "step": step})
        try:
            response = self.http.request(method, path, headers=self.headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = self._error_body(e.response)
            logger.error(
                "Busbud request failed",
                extra={"step": step, "path": path, "status_code": e.response.status_code}
            )
            raise ProviderError(
                f"Busbud {step} failed with HTTP {e.response.status_code}",
                cause=e, step=step, response=body,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Busbud request error", extra={"step": step, "path": path, "error": str(e)})
            raise ProviderError(f"Busbud {step} request error", cause=e, step=step) from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Busbud {step} returned invalid JSON", cause=e, step=step) from e

    @staticmethod
    def _error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text
