from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.checkout.exceptions import StoreError
from src.models import Agent


class SqlAgentRepository:
    """Agent directory backed by the agents table"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_agent(self, agent_id: str) -> Optional[Dict[str, Any]]:
        """Get active agent by id"""
        db = self.session_factory()
        try:
            agent = db.query(Agent).filter(Agent.id == str(agent_id), Agent.active.is_(True)).first()
            if agent is None:
                return None
            return {
                "id": agent.id,
                "email": agent.email,
                "name": agent.name,
                "branch_code": agent.branch_code,
            }
        except SQLAlchemyError as e:
            raise StoreError(f"Agent lookup failed for {agent_id}", cause=e, store="agents") from e
        finally:
            db.close()
