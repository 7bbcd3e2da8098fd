import logging
from typing import Any, Dict, Optional

from src.ports import AgentDirectory
from src.checkout.exceptions import AgentContextMissingError, StoreError
from src.checkout.resolvers import NOT_FOUND, Resolved, first_of
from src.checkout.schemas import AgentAttribution, RequestContext, is_truthy

logger = logging.getLogger(__name__)

NESTED_AGENT_KEYS = ("agent", "agentContext", "agent_context")


def nested_agent(body: Dict[str, Any]) -> Dict[str, Any]:
    for key in NESTED_AGENT_KEYS:
        value = body.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _from_header(context: RequestContext, name: str) -> Resolved:
    value = context.header(name)
    return Resolved(value, f"header:{name}") if value else NOT_FOUND


def _from(source: Dict[str, Any], keys, label: str) -> Resolved:
    found = first_of(source, keys)
    return Resolved(found.value, f"{label}:{found.source}") if found.found else NOT_FOUND


def _first(*candidates: Resolved) -> Resolved:
    for candidate in candidates:
        if candidate.found:
            return candidate
    return NOT_FOUND


def resolve_agent_mode(context: RequestContext) -> Resolved[bool]:
    """header > body (flat, then nested agent object) > query"""
    body, agent = context.body, nested_agent(context.body)
    raw = _first(
        _from_header(context, "x-agent-mode"),
        _from(body, ("agentMode", "agent_mode"), "body"),
        _from(agent, ("agentMode", "agent_mode"), "body.agent"),
        _from(context.query, ("agentMode", "agent_mode"), "query"),
    )
    return Resolved(is_truthy(raw.value), raw.source) if raw.found else NOT_FOUND


def resolve_agent_id(context: RequestContext) -> Resolved[str]:
    body = context.body
    found = _first(
        _from_header(context, "x-agent-id"),
        _from(body, ("agentId", "agent_id"), "body"),
        _from(context.query, ("agentId", "agent_id"), "query"),
        _from(nested_agent(body), ("agentId", "agent_id", "id"), "body.agent"),
    )
    return Resolved(str(found.value).strip(), found.source) if found.found else NOT_FOUND


def resolve_agent_email(context: RequestContext) -> Resolved[str]:
    body = context.body
    found = _first(
        _from_header(context, "x-agent-email"),
        _from(body, ("agentEmail", "agent_email"), "body"),
        _from(context.query, ("agentEmail", "agent_email"), "query"),
        _from(nested_agent(body), ("agentEmail", "agent_email", "emailLower", "email"), "body.agent"),
        Resolved(context.context_email, "request_context") if context.context_email else NOT_FOUND,
    )
    return Resolved(str(found.value).strip().lower(), found.source) if found.found else NOT_FOUND


def resolve_agent_name(context: RequestContext) -> Resolved[str]:
    body = context.body
    found = _first(
        _from_header(context, "x-agent-name"),
        _from(body, ("agentName", "agent_name"), "body"),
        _from(context.query, ("agentName", "agent_name"), "query"),
        _from(nested_agent(body), ("agentName", "agent_name", "name"), "body.agent"),
    )
    return Resolved(str(found.value).strip(), found.source) if found.found else NOT_FOUND


class AgentAttributionResolver:
    """Decides which sales agent, if any, a booking is attributed to"""

    def __init__(self, agents: AgentDirectory):
        self.agents = agents

    def resolve(self, context: RequestContext, cart_document: Optional[Dict[str, Any]] = None) -> AgentAttribution:
        """Resolve attribution, raising AgentContextMissingError when agent mode has no email"""
        mode = resolve_agent_mode(context)
        agent_id = resolve_agent_id(context)
        email = resolve_agent_email(context)
        name = resolve_agent_name(context)

        if not email.found and agent_id.found:
            email = self._email_from_directory(agent_id.value)

        agent_mode = bool(mode.value)

        if not email.found:
            persisted = self._from_document(cart_document)
            if persisted is not None:
                logger.debug("Using persisted agent attribution", extra={"agent_email": persisted.agent_email})
                return persisted

        if agent_mode and not email.found:
            logger.warning(
                "Agent mode asserted without a resolvable agent email",
                extra={"agent_id": agent_id.value, "mode_source": mode.source}
            )
            raise AgentContextMissingError(
                "AGENT_CONTEXT_MISSING: agent mode requested but no agent email could be resolved",
                agent_id=agent_id.value,
            )

        if not email.found:
            return AgentAttribution()

        attribution = AgentAttribution(
            agent_mode=True,
            agent_id=agent_id.value,
            agent_email=email.value,
            agent_name=name.value,
            source=email.source,
        )
        logger.info(
            "Resolved agent attribution",
            extra={"agent_email": attribution.agent_email, "email_source": email.source}
        )
        return attribution

    def _email_from_directory(self, agent_id: str) -> Resolved:
        try:
            agent = self.agents.get_agent(agent_id)
        except StoreError:
            logger.warning("Agent directory lookup failed", exc_info=True, extra={"agent_id": agent_id})
            return NOT_FOUND
        email = (agent or {}).get("email")
        if email and str(email).strip():
            return Resolved(str(email).strip().lower(), "agent_directory")
        return NOT_FOUND

    @staticmethod
    def _from_document(cart_document: Optional[Dict[str, Any]]) -> Optional[AgentAttribution]:
        if not cart_document:
            return None
        agent = cart_document.get("agent") if isinstance(cart_document.get("agent"), dict) else {}
        email = cart_document.get("agentEmail") or agent.get("agentEmail")
        if not email or not str(email).strip():
            return None
        return AgentAttribution(
            agent_mode=True,
            agent_id=cart_document.get("agentId") or agent.get("agentId"),
            agent_email=str(email).strip().lower(),
            agent_name=cart_document.get("agentName") or agent.get("agentName"),
            source="cart_document",
        )
