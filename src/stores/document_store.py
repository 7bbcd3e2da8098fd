import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.checkout.exceptions import StoreError
from src.checkout.identity_service import format_durable_id
from src.models import GLOBAL_COUNTER, CartDocument, EntityCounter
from src.stores.cart_repository import TERMINAL_STATUSES

logger = logging.getLogger(__name__)


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``updates`` into a copy of ``base``; nested dicts merge, everything else replaces"""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def set_path(data: Dict[str, Any], dotted_key: str, value: Any) -> None:
    """Assign ``value`` at a dotted path such as ``invoice.status``"""
    *parents, leaf = dotted_key.split(".")
    node = data
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[leaf] = value


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqlDocumentStore:
    """Cart documents stored as JSON rows, with a locked counter for durable ids"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get(self, durable_id: str) -> Optional[Dict[str, Any]]:
        """Get cart document by durable id"""
        with self._session("get") as db:
            document = db.get(CartDocument, durable_id)
            return copy.deepcopy(document.data) if document else None

    def set(self, durable_id: str, data: Dict[str, Any], merge: bool = True) -> None:
        """Create or replace a cart document, merging into the existing one by default"""
        with self._session("set") as db:
            document = db.get(CartDocument, durable_id)
            if document is None:
                document = CartDocument(id=durable_id, data={})
                db.add(document)
            current = document.data or {}
            self._write(document, deep_merge(current, data) if merge else data)
            db.commit()

    def update(self, durable_id: str, fields: Dict[str, Any]) -> None:
        """Update fields (dotted keys allowed) on an existing cart document"""
        with self._session("update") as db:
            document = db.get(CartDocument, durable_id)
            if document is None:
                raise StoreError(f"Cart document {durable_id} not found", store="document")
            data = copy.deepcopy(document.data or {})
            for key, value in fields.items():
                set_path(data, key, value)
            self._write(document, data)
            db.commit()

    def find_by_provider_cart_id(self, provider_cart_id: str) -> Optional[str]:
        with self._session("find_by_provider_cart_id") as db:
            document = (
                db.query(CartDocument)
                .filter(CartDocument.provider_cart_id == str(provider_cart_id))
                .order_by(CartDocument.created_at.asc())
                .first()
            )
            return document.id if document else None

    def find_by_booking_reference(self, booking_reference: str) -> Optional[Dict[str, Any]]:
        """Cart document whose booking reference (or durable id) matches"""
        with self._session("find_by_booking_reference") as db:
            reference = str(booking_reference).strip()
            document = (
                db.query(CartDocument)
                .filter(or_(CartDocument.booking_reference == reference, CartDocument.id == reference))
                .first()
            )
            if document is None:
                return None
            return {"id": document.id, **copy.deepcopy(document.data or {})}

    def get_or_create_durable_id(self, provider_cart_id: str, branch_hint: Optional[str] = None) -> str:
        """Reuse the durable id for ``provider_cart_id`` or mint the next one.

        The counter row is locked for the whole transaction and the existence
        check is repeated under the lock, so concurrent requests for the same
        provider cart id end up with one durable id.
        """
        provider_cart_id = str(provider_cart_id)
        existing = self.find_by_provider_cart_id(provider_cart_id)
        if existing:
            return existing

        try:
            return self._mint_durable_id(provider_cart_id, branch_hint)
        except StoreError as e:
            if not isinstance(e.cause, IntegrityError):
                raise
            # A concurrent first request created the counter row; it exists now
            logger.info("Retrying durable id allocation", extra={"provider_cart_id": provider_cart_id})
            return self._mint_durable_id(provider_cart_id, branch_hint)

    def _mint_durable_id(self, provider_cart_id: str, branch_hint: Optional[str]) -> str:
        with self._session("get_or_create_durable_id") as db:
            counter = (
                db.query(EntityCounter)
                .filter(EntityCounter.name == GLOBAL_COUNTER)
                .with_for_update()
                .first()
            )
            if counter is None:
                counter = EntityCounter(name=GLOBAL_COUNTER, last_id=0)
                db.add(counter)
                db.flush()

            existing = (
                db.query(CartDocument.id)
                .filter(CartDocument.provider_cart_id == provider_cart_id)
                .first()
            )
            if existing:
                db.rollback()
                return existing[0]

            counter.last_id = (counter.last_id or 0) + 1
            durable_id = format_durable_id(counter.last_id, branch_hint)

            document = CartDocument(id=durable_id, data={})
            self._write(document, {
                "busbudCartId": provider_cart_id,
                "cartId": provider_cart_id,
                "status": "active",
                "source": "busbud",
                "createdAt": _now_iso(),
            })
            db.add(document)
            db.commit()

        logger.info(
            "Minted durable cart id",
            extra={"durable_cart_id": durable_id, "provider_cart_id": provider_cart_id}
        )
        return durable_id

    def _write(self, document: CartDocument, data: Dict[str, Any]) -> None:
        data = jsonable_encoder(data)
        current_status = (document.data or {}).get("status")
        if current_status in TERMINAL_STATUSES and data.get("status") not in TERMINAL_STATUSES:
            logger.debug(
                "Keeping terminal document status",
                extra={"durable_cart_id": document.id, "status": current_status, "requested": data.get("status")}
            )
            data["status"] = current_status
        data["updatedAt"] = _now_iso()
        # Assign a new object so the JSON column is flagged dirty
        document.data = data
        if data.get("busbudCartId"):
            document.provider_cart_id = str(data["busbudCartId"])
        reference = data.get("bookingReference") or (data.get("invoice") or {}).get("pnr")
        if reference:
            document.booking_reference = str(reference)

    def _session(self, operation: str) -> "_StoreSession":
        return _StoreSession(self.session_factory, operation)


class _StoreSession:
    """Session context that rolls back and wraps SQLAlchemy failures in StoreError"""

    def __init__(self, session_factory: Callable[[], Session], operation: str):
        self.session_factory = session_factory
        self.operation = operation
        self.db: Optional[Session] = None

    def __enter__(self) -> Session:
        self.db = self.session_factory()
        return self.db

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc is not None:
                self.db.rollback()
        finally:
            self.db.close()

        if isinstance(exc, SQLAlchemyError):
            logger.error("Document store operation failed", extra={"operation": self.operation}, exc_info=exc)
            raise StoreError(f"Document store {self.operation} failed", cause=exc, store="document") from exc
        return False
