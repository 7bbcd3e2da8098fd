import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from src.checkout.dependencies import get_document_store, get_orchestrator
from src.checkout.exceptions import CheckoutError, PassengerQuestionsUnansweredError
from src.checkout.orchestrator import PurchaseOrchestrator
from src.checkout.schemas import CartDocumentResponse, CheckoutRequest, CheckoutResponse, RequestContext
from src.stores.document_store import SqlDocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()

def request_context(request: Request, body: Dict[str, Any]) -> RequestContext:
    """Collect the inputs agent attribution reads from"""
    return RequestContext(
        headers={k.lower(): v for k, v in request.headers.items()},
        body=body,
        query=dict(request.query_params),
        context_email=getattr(request.state, "agent_email", None),
    )

def client_error_response(error: CheckoutError) -> JSONResponse:
    if isinstance(error, PassengerQuestionsUnansweredError):
        message = f"PassengerQuestionsUnanswered: {error.question_key}"
    else:
        message = error.message
    return JSONResponse(
        status_code=error.status_code,
        content={
            "success": False,
            "error": error.code,
            "message": message,
            "details": error.to_details(),
        }
    )

def server_error_response(error: Exception, durable_id: str = None) -> JSONResponse:
    try:
        content = {
            "success": False,
            "error": "An error occurred during purchase processing",
            "details": error.to_details() if isinstance(error, CheckoutError) else str(error),
            "timestamp": _timestamp(),
            "requiresAttention": True,
        }
        step = getattr(error, "step", None)
        if step:
            content["step"] = step
        if durable_id:
            content["durableCartId"] = durable_id
    except Exception:
        logger.exception("Failed to build error response")
        content = {
            "success": False,
            "error": "An internal server error occurred",
            "timestamp": _timestamp(),
        }
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

# Checkout Endpoints
@router.post("/trips/frontend", response_model=CheckoutResponse, response_model_by_alias=True)
def checkout_trip(
    request: Request,
    payload: Any = Body(...),
    orchestrator: PurchaseOrchestrator = Depends(get_orchestrator),
    documents: SqlDocumentStore = Depends(get_document_store),
):
    """Submit passengers and purchaser for a provider cart and prepare it for payment"""

    try:
        checkout_request = CheckoutRequest.from_payload(payload)
    except CheckoutError as e:
        logger.info("Rejected checkout request", extra={"error_code": e.code})
        return client_error_response(e)

    context = request_context(request, payload)

    try:
        return orchestrator.checkout(checkout_request, context)
    except CheckoutError as e:
        if e.status_code < 500:
            logger.info("Checkout rejected", extra={"error_code": e.code, "provider_cart_id": checkout_request.cart_id})
            return client_error_response(e)
        logger.error(
            "Checkout failed",
            exc_info=True,
            extra={"error_code": e.code, "provider_cart_id": checkout_request.cart_id}
        )
        return server_error_response(e, _durable_id_for(documents, checkout_request.cart_id))
    except Exception as e:
        logger.exception("Unexpected checkout failure", extra={"provider_cart_id": checkout_request.cart_id})
        return server_error_response(e, _durable_id_for(documents, checkout_request.cart_id))

def _durable_id_for(documents: SqlDocumentStore, provider_cart_id: str):
    try:
        return documents.find_by_provider_cart_id(provider_cart_id)
    except CheckoutError:
        logger.warning("Could not look up durable cart id", exc_info=True)
        return None

@router.get("/carts/reference/{booking_reference}", response_model=CartDocumentResponse)
def get_cart_by_reference(
    booking_reference: str,
    documents: SqlDocumentStore = Depends(get_document_store),
):
    """Get cart document by booking reference"""

    document = documents.find_by_booking_reference(booking_reference)
    if not document:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Cart not found"
        )

    data = dict(document)
    durable_id = data.pop("id")
    return CartDocumentResponse(
        durable_cart_id=durable_id,
        provider_cart_id=data.get("busbudCartId"),
        booking_reference=data.get("bookingReference") or durable_id,
        status=data.get("status"),
        data=data,
    )
