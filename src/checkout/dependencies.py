import logging
from functools import lru_cache

from fastapi import Depends

from src.config import settings
from src.database import SessionLocal, DocumentSessionLocal
from src.ports import InvoicingService
from src.checkout.agent_service import AgentAttributionResolver
from src.checkout.exceptions import ConfigurationError
from src.checkout.identity_service import CartIdentityResolver
from src.checkout.invoice_service import InvoiceBuilder
from src.checkout.orchestrator import PurchaseOrchestrator
from src.checkout.pricing import PriceAdjuster
from src.integrations.busbud_client import BusbudClient
from src.integrations.odoo_client import OdooInvoicingClient
from src.stores.agent_repository import SqlAgentRepository
from src.stores.cache import CartCache
from src.stores.cart_repository import SqlCartRepository
from src.stores.document_store import SqlDocumentStore

logger = logging.getLogger(__name__)

@lru_cache()
def get_cart_cache() -> CartCache:
    """Process-wide cart snapshot cache"""
    return CartCache(
        default_ttl_seconds=settings.CART_CACHE_TTL_SECONDS,
        max_size=settings.CART_CACHE_MAX_SIZE,
    )

@lru_cache()
def get_provider() -> BusbudClient:
    return BusbudClient(
        base_url=settings.BUSBUD_BASE_URL,
        token=settings.BUSBUD_TOKEN,
        cache=get_cart_cache(),
        timeout=settings.BUSBUD_TIMEOUT_SECONDS,
    )

def get_document_store() -> SqlDocumentStore:
    return SqlDocumentStore(DocumentSessionLocal)

def get_cart_repository() -> SqlCartRepository:
    return SqlCartRepository(SessionLocal)

def get_agent_repository() -> SqlAgentRepository:
    return SqlAgentRepository(SessionLocal)

def create_invoicing_client() -> InvoicingService:
    """Build an authenticated invoicing client, failing fast on missing settings"""
    missing = settings.missing_invoicing_settings()
    if missing:
        logger.error("Invoicing is not configured", extra={"missing_settings": missing})
        raise ConfigurationError(
            f"Missing invoicing configuration: {', '.join(missing)}",
            setting_names=missing,
        )

    client = OdooInvoicingClient(
        url=settings.TRAVELMASTER_URL,
        db=settings.TRAVELMASTER_DB,
        username=settings.TRAVELMASTER_USERNAME,
        password=settings.invoicing_password,
    )
    client.authenticate()
    return client

def get_invoicing_factory():
    return create_invoicing_client

def get_orchestrator(
    provider: BusbudClient = Depends(get_provider),
    documents: SqlDocumentStore = Depends(get_document_store),
    carts: SqlCartRepository = Depends(get_cart_repository),
    agents: SqlAgentRepository = Depends(get_agent_repository),
    invoicing_factory=Depends(get_invoicing_factory),
) -> PurchaseOrchestrator:
    """Assemble a checkout orchestrator for one request"""
    return PurchaseOrchestrator(
        provider=provider,
        documents=documents,
        carts=carts,
        identity=CartIdentityResolver(documents, carts),
        agents=AgentAttributionResolver(agents),
        invoices=InvoiceBuilder(documents, carts, adjuster=PriceAdjuster.from_settings()),
        invoicing_factory=invoicing_factory,
    )
