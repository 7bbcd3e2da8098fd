from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from src.config import settings

def _connect_args(url: str) -> dict:
    # SQLite needs check_same_thread=False under FastAPI's threadpool
    return {"check_same_thread": False} if url.startswith("sqlite") else {}

# Relational store (carts, trip selections, agents)
engine = create_engine(settings.DATABASE_URL, connect_args=_connect_args(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

# Document store (cart documents, entity counters)
document_engine = create_engine(
    settings.document_database_url,
    connect_args=_connect_args(settings.document_database_url)
)
DocumentSessionLocal = sessionmaker(bind=document_engine, autoflush=False, autocommit=False)

Base = declarative_base()

def init_db():
    # Import models here so they get registered with Base before creating tables
    import src.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    if document_engine.url != engine.url:
        Base.metadata.create_all(bind=document_engine)
    _ensure_counter()

def _ensure_counter():
    # Durable id allocation locks this row, so it must exist before the first checkout
    from src.models import GLOBAL_COUNTER, EntityCounter
    db = DocumentSessionLocal()
    try:
        if db.get(EntityCounter, GLOBAL_COUNTER) is None:
            db.add(EntityCounter(name=GLOBAL_COUNTER, last_id=0))
            db.commit()
    finally:
        db.close()
