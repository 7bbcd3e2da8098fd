import copy
import logging
from typing import Any, Callable, Dict, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.checkout.exceptions import StoreError
from src.models import Cart, TripSelection

logger = logging.getLogger(__name__)

# Statuses that a later awaiting_payment/active write must never replace
TERMINAL_STATUSES = {"confirmed", "paid"}

JSON_COLUMNS = {"purchaser", "passengers", "provider_response", "purchaser_response", "charges", "accepted_charges", "invoice"}


class SqlCartRepository:
    """Relational cart rows keyed by durable id, plus raw trip-selection snapshots"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def upsert_cart(self, cart_id: str, **fields: Any) -> None:
        """Insert or merge a cart row.

        ``None`` values leave the column untouched, an empty ``booked_by``
        never clears an existing one, and ``confirmed``/``paid`` are never
        downgraded.
        """
        db = self.session_factory()
        try:
            try:
                self._merge_row(db, cart_id, fields)
                db.commit()
            except IntegrityError:
                # Another request inserted the row first; merge into it
                db.rollback()
                self._merge_row(db, cart_id, fields)
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Cart upsert failed", extra={"durable_cart_id": cart_id}, exc_info=True)
            raise StoreError(f"Cart upsert failed for {cart_id}", cause=e, store="relational") from e
        finally:
            db.close()

    def _merge_row(self, db: Session, cart_id: str, fields: Dict[str, Any]) -> None:
        cart = db.get(Cart, cart_id)
        if cart is None:
            cart = Cart(cart_id=cart_id)
            db.add(cart)

        for name, value in fields.items():
            if not hasattr(Cart, name):
                raise ValueError(f"Unknown cart column: {name}")
            if value is None:
                continue

            if name == "status":
                current = cart.status
                if current in TERMINAL_STATUSES and value not in TERMINAL_STATUSES:
                    logger.debug(
                        "Keeping terminal cart status",
                        extra={"durable_cart_id": cart_id, "status": current, "requested": value}
                    )
                    continue
            elif name == "booked_by":
                value = str(value).strip()
                if not value:
                    continue
            elif name in JSON_COLUMNS:
                value = jsonable_encoder(value)

            setattr(cart, name, value)

        db.flush()

    def get_cart(self, cart_id: str) -> Optional[Cart]:
        """Get cart row by durable id"""
        db = self.session_factory()
        try:
            cart = db.get(Cart, cart_id)
            if cart is not None:
                db.expunge(cart)
            return cart
        except SQLAlchemyError as e:
            raise StoreError(f"Cart lookup failed for {cart_id}", cause=e, store="relational") from e
        finally:
            db.close()

    def latest_trip_selection(self, provider_cart_id: str) -> Optional[Dict[str, Any]]:
        """Most recent raw trip-selection snapshot for a provider cart"""
        db = self.session_factory()
        try:
            selection = (
                db.query(TripSelection)
                .filter(TripSelection.cart_id == str(provider_cart_id))
                .order_by(TripSelection.created_at.desc(), TripSelection.id.desc())
                .first()
            )
            return copy.deepcopy(selection.raw) if selection and selection.raw else None
        except SQLAlchemyError as e:
            raise StoreError("Trip selection lookup failed", cause=e, store="relational") from e
        finally:
            db.close()

    def record_trip_selection(self, provider_cart_id: str, trip_id: Optional[str], raw: Dict[str, Any]) -> None:
        db = self.session_factory()
        try:
            db.add(TripSelection(cart_id=str(provider_cart_id), trip_id=trip_id, raw=jsonable_encoder(raw)))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError("Recording trip selection failed", cause=e, store="relational") from e
        finally:
            db.close()
