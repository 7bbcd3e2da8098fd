import logging
import xmlrpc.client
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from src.checkout.exceptions import InvoicingError

logger = logging.getLogger(__name__)

INVOICE_MODEL = "account.move"
PARTNER_MODEL = "res.partner"
ODOO_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def as_line_command(line: Any) -> Optional[List[Any]]:
    """Normalize an invoice line into Odoo's ``[0, 0, {...}]`` create command"""
    if isinstance(line, (list, tuple)):
        if len(line) == 3 and line[0] == 0 and line[1] == 0 and isinstance(line[2], dict):
            values = dict(line[2])
        elif len(line) == 2 and isinstance(line[1], dict):
            values = dict(line[1])
        else:
            return None
    elif isinstance(line, dict):
        values = dict(line)
    else:
        return None
    # Expiry lives on the invoice, never on its lines
    values.pop("x_datetime", None)
    return [0, 0, values]


def format_expiry(expiry: datetime) -> str:
    if expiry.tzinfo is not None:
        expiry = expiry.astimezone(timezone.utc)
    return expiry.strftime(ODOO_DATETIME_FORMAT)


class OdooInvoicingClient:
    """Odoo XML-RPC client for partners and customer invoices"""

    def __init__(
        self,
        url: str,
        db: str,
        username: str,
        password: str,
        common: Any = None,
        models: Any = None,
    ):
        self.db = db
        self.username = username
        self.password = password
        base = url.rstrip("/")
        self.common = common or xmlrpc.client.ServerProxy(f"{base}/xmlrpc/2/common", allow_none=True)
        self.models = models or xmlrpc.client.ServerProxy(f"{base}/xmlrpc/2/object", allow_none=True)
        self.uid: Optional[int] = None

    def authenticate(self) -> int:
        try:
            uid = self.common.authenticate(self.db, self.username, self.password, {})
        except (xmlrpc.client.Error, OSError) as e:
            raise InvoicingError("Failed to authenticate with invoicing service", cause=e) from e
        if not uid:
            raise InvoicingError("Invoicing authentication failed: no user id returned")
        self.uid = uid
        logger.info("Authenticated with invoicing service", extra={"uid": uid})
        return uid

    def execute(self, model: str, method: str, args: List[Any], kwargs: Optional[Dict[str, Any]] = None) -> Any:
        if not self.uid:
            self.authenticate()
        try:
            return self.models.execute_kw(self.db, self.uid, self.password, model, method, args, kwargs or {})
        except (xmlrpc.client.Error, OSError) as e:
            logger.error("Invoicing call failed", extra={"model": model, "method": method})
            raise InvoicingError(f"Invoicing call {model}.{method} failed", cause=e) from e

    def find_or_create_partner(self, name: str, email: str = "", phone: str = "") -> int:
        existing = self.execute(PARTNER_MODEL, "search", [[["name", "=", name]]])
        if existing:
            logger.debug("Found existing partner", extra={"partner_id": existing[0]})
            return existing[0]
        partner_id = self.execute(PARTNER_MODEL, "create", [{"name": name, "email": email, "phone": phone}])
        logger.info("Created partner", extra={"partner_id": partner_id})
        return partner_id

    def find_or_create_invoice(
        self,
        partner_id: int,
        payment_reference: str,
        lines: List[Any],
        expiry: Optional[datetime] = None,
    ) -> int:
        """Reuse the invoice for ``payment_reference`` (refreshing lines and expiry) or create one"""
        commands = [c for c in (as_line_command(line) for line in lines or []) if c is not None]

        existing = self.execute(INVOICE_MODEL, "search", [[["payment_reference", "=", payment_reference]]])
        if existing:
            invoice_id = existing[0]
            updates: Dict[str, Any] = {}
            if commands:
                updates["invoice_line_ids"] = commands
            if expiry is not None:
                updates["x_datetime"] = format_expiry(expiry)
            if updates and not self.execute(INVOICE_MODEL, "write", [[invoice_id], updates]):
                raise InvoicingError(f"Failed to update existing invoice {invoice_id}")
            logger.info("Reused existing invoice", extra={"invoice_id": invoice_id, "payment_reference": payment_reference})
            return invoice_id

        if expiry is None:
            raise InvoicingError("Invoice expiry is required")
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        if expiry <= datetime.now(timezone.utc):
            raise InvoicingError(f"Invoice expiry must be in the future, got {expiry.isoformat()}")

        invoice_id = self.execute(INVOICE_MODEL, "create", [{
            "partner_id": partner_id,
            "payment_reference": payment_reference,
            "move_type": "out_invoice",
            "invoice_date": date.today().isoformat(),
            "x_datetime": format_expiry(expiry),
            "invoice_line_ids": commands,
        }])
        logger.info("Created invoice", extra={"invoice_id": invoice_id, "payment_reference": payment_reference})
        return invoice_id

    def post_invoice(self, invoice_id: int) -> bool:
        """Post a draft invoice; an already-posted invoice counts as success"""
        if self._invoice_state(invoice_id) == "posted":
            logger.info("Invoice already posted", extra={"invoice_id": invoice_id})
            return True

        self.execute(INVOICE_MODEL, "action_post", [[invoice_id]])
        posted = self._invoice_state(invoice_id) == "posted"
        logger.info("Posted invoice", extra={"invoice_id": invoice_id, "posted": posted})
        return posted

    def _invoice_state(self, invoice_id: int) -> Optional[str]:
        records = self.execute(INVOICE_MODEL, "read", [[invoice_id], ["state"]])
        return records[0].get("state") if records else None
