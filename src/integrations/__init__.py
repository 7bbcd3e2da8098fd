"""
External Service Integrations

- busbud_client.py: Busbud cart API over httpx (carts, passengers,
  purchaser, charges) with an injected cart snapshot cache
- odoo_client.py: Odoo XML-RPC client for partners and customer invoices
"""

from .busbud_client import BusbudClient
from .odoo_client import OdooInvoicingClient

__all__ = [
    "BusbudClient",
    "OdooInvoicingClient",
]
