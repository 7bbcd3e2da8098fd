#!/usr/bin/env python3

from src.database import SessionLocal, DocumentSessionLocal, init_db
from src.models import GLOBAL_COUNTER, Agent, EntityCounter

AGENTS = [
    {"id": "agent-001", "email": "sales.montreal@example.com", "name": "Montreal Sales Desk", "branch_code": "01"},
    {"id": "agent-002", "email": "sales.toronto@example.com", "name": "Toronto Sales Desk", "branch_code": "02"},
    {"id": "agent-003", "email": "callcenter@example.com", "name": "Call Center", "branch_code": "03"},
]

def create_seed_data():
    init_db()
    db = SessionLocal()
    documents = DocumentSessionLocal()

    try:
        print("Creating seed data for the checkout gateway...")

        # 1. Agents
        print("Creating agents...")
        for values in AGENTS:
            agent = db.query(Agent).filter(Agent.id == values["id"]).first()
            if agent is None:
                db.add(Agent(active=True, **values))
            else:
                agent.email = values["email"]
                agent.name = values["name"]
                agent.branch_code = values["branch_code"]
        db.commit()

        print("Seed data created successfully!")
        print(f"  Agents: {db.query(Agent).count()}")
        print(f"  Counter '{GLOBAL_COUNTER}' starts after: {documents.get(EntityCounter, GLOBAL_COUNTER).last_id}")

    except Exception as e:
        print(f"Error creating seed data: {e}")
        db.rollback()
        documents.rollback()
        raise
    finally:
        db.close()
        documents.close()

if __name__ == "__main__":
    create_seed_data()
