from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Numeric, JSON
from sqlalchemy.sql import func
from src.database import Base

# ================================
# Relational store: carts
# ================================
class Cart(Base):
    __tablename__ = "carts"

    cart_id = Column(String(64), primary_key=True, index=True)  # durable id (PNR)
    busbud_cart_id = Column(String(128), index=True)
    status = Column(String(32), default="active", nullable=False)
    currency = Column(String(8))
    retail_price = Column(Numeric(10, 2))
    booked_by = Column(String(255), index=True)
    origin = Column(String(255))
    destination = Column(String(255))
    depart_at = Column(DateTime(timezone=True))
    arrive_at = Column(DateTime(timezone=True))
    return_origin = Column(String(255))
    return_destination = Column(String(255))
    return_depart_at = Column(DateTime(timezone=True))
    return_arrive_at = Column(DateTime(timezone=True))
    passenger_count = Column(Integer)
    purchaser = Column(JSON)
    passengers = Column(JSON)
    provider_response = Column(JSON)
    purchaser_response = Column(JSON)
    charges = Column(JSON)
    accepted_charges = Column(JSON)
    invoice = Column(JSON)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class TripSelection(Base):
    __tablename__ = "trip_selections"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(String(128), index=True, nullable=False)  # provider cart id
    trip_id = Column(String(255))
    raw = Column(JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

# ================================
# Agents
# ================================
class Agent(Base):
    __tablename__ = "agents"

    id = Column(String(64), primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True)
    name = Column(String(255))
    branch_code = Column(String(2))
    active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

# ================================
# Document store: cart documents & counters
# ================================
class CartDocument(Base):
    __tablename__ = "cart_documents"

    id = Column(String(64), primary_key=True, index=True)
    provider_cart_id = Column(String(128), index=True)
    booking_reference = Column(String(64), index=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# Counter behind every durable cart id
GLOBAL_COUNTER = "global_counter"

class EntityCounter(Base):
    __tablename__ = "entity_counters"

    name = Column(String(64), primary_key=True)
    last_id = Column(BigInteger, default=0, nullable=False)
