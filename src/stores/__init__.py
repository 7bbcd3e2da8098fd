"""
Persistence Adapters Module

Concrete adapters behind the checkout ports:

- document_store.py: Cart documents as JSON rows, durable-id counter
- cart_repository.py: Relational cart rows with monotonic status and
  trip-selection snapshots
- agent_repository.py: Sales agent directory
- cache.py: TTL cache for provider cart snapshots
"""

from .cache import CartCache
from .document_store import SqlDocumentStore
from .cart_repository import SqlCartRepository
from .agent_repository import SqlAgentRepository

__all__ = [
    "CartCache",
    "SqlDocumentStore",
    "SqlCartRepository",
    "SqlAgentRepository",
]
