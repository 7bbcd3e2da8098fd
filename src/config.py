from pydantic_settings import BaseSettings
from typing import Optional
from decimal import Decimal

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./checkout.db"
    DOCUMENT_DATABASE_URL: Optional[str] = None

    # Application
    PROJECT_NAME: str = "Bus Ticket Checkout Gateway"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Trip-booking provider
    BUSBUD_BASE_URL: str = "https://napi.busbud.com"
    BUSBUD_TOKEN: str = ""
    BUSBUD_TIMEOUT_SECONDS: float = 15.0

    # Invoicing (Odoo)
    TRAVELMASTER_URL: Optional[str] = None
    TRAVELMASTER_DB: Optional[str] = None
    TRAVELMASTER_USERNAME: Optional[str] = None
    TRAVELMASTER_PASSWORD: Optional[str] = None
    TRAVELMASTER_API_KEY: Optional[str] = None
    INVOICE_PRODUCT_ID: int = 92
    INVOICE_UOM_ID: int = 1
    HOLD_EXPIRY_HOURS: int = 24

    # Price adjustments applied at search time and reused for invoices
    PRICING_APPLY: bool = False
    PRICING_MARKUP: Decimal = Decimal('0')
    PRICING_CHARGES: Decimal = Decimal('0')
    PRICING_DISCOUNT: Decimal = Decimal('0')
    PRICING_ROUND_TO_NEAREST: Decimal = Decimal('0')

    # Provider cart snapshot cache
    CART_CACHE_TTL_SECONDS: float = 60.0
    CART_CACHE_MAX_SIZE: int = 1000

    @property
    def document_database_url(self) -> str:
        return self.DOCUMENT_DATABASE_URL or self.DATABASE_URL

    @property
    def invoicing_password(self) -> Optional[str]:
        return self.TRAVELMASTER_PASSWORD or self.TRAVELMASTER_API_KEY

    def missing_invoicing_settings(self) -> list:
        """Names of invoicing credentials that are not configured"""
        missing = []
        if not self.TRAVELMASTER_URL:
            missing.append("TRAVELMASTER_URL")
        if not self.TRAVELMASTER_DB:
            missing.append("TRAVELMASTER_DB")
        if not self.TRAVELMASTER_USERNAME:
            missing.append("TRAVELMASTER_USERNAME")
        if not self.invoicing_password:
            missing.append("TRAVELMASTER_PASSWORD or TRAVELMASTER_API_KEY")
        return missing

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
