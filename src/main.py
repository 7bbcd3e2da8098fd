from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from src.config import settings
from src.database import init_db
from src.logging_config import configure_logging
from src.checkout import router as checkout_router

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Bus ticket checkout gateway for Busbud carts with Odoo hold invoices",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],  # Frontend dev servers
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    checkout_router.router,
    prefix=f"{settings.API_V1_STR}/checkout",
    tags=["Checkout"]
)

@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": "Bus Ticket Checkout Gateway API",
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
