import logging
from typing import Optional

from src.ports import CartRepository, DocumentStore
from src.checkout.exceptions import StoreError

logger = logging.getLogger(__name__)

TICKET_TYPE_CODE = "1"
DEFAULT_BRANCH_CODE = "01"
COUNTER_WIDTH = 6

_BRANCH_ALIASES = {
    "chatbot": "02",
    "bot": "02",
    "harare": "03",
    "gweru": "04",
}


def branch_code_for(hint: Optional[str]) -> str:
    """Two-digit branch code: a two-digit hint verbatim, known aliases, else ``01``"""
    text = str(hint or "").strip().lower()
    if len(text) == 2 and text.isdigit():
        return text
    return _BRANCH_ALIASES.get(text, DEFAULT_BRANCH_CODE)


def format_durable_id(counter: int, branch_hint: Optional[str] = None) -> str:
    return f"{TICKET_TYPE_CODE}{branch_code_for(branch_hint)}{counter:0{COUNTER_WIDTH}d}"


class CartIdentityResolver:
    """Maps a provider cart id to the durable booking id, minting one on first sight"""

    def __init__(self, documents: DocumentStore, carts: CartRepository):
        self.documents = documents
        self.carts = carts

    def resolve(self, provider_cart_id: str, branch_hint: Optional[str] = None) -> str:
        """Return the durable id for ``provider_cart_id``; failures propagate"""
        durable_id = self.documents.get_or_create_durable_id(provider_cart_id, branch_hint)

        try:
            self.carts.upsert_cart(durable_id, busbud_cart_id=provider_cart_id)
        except StoreError:
            logger.warning(
                "Failed to link relational cart row",
                exc_info=True,
                extra={"durable_cart_id": durable_id, "provider_cart_id": provider_cart_id}
            )

        logger.info(
            "Resolved durable cart id",
            extra={"durable_cart_id": durable_id, "provider_cart_id": provider_cart_id}
        )
        return durable_id
