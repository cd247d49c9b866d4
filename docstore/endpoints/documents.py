from __future__ import annotations

import json
from typing import Any, NoReturn

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from docstore.utils.documents import DocumentStore
from docstore.utils.logging import get_logger

router = APIRouter(tags=["documents"])
logger = get_logger("endpoints.documents")

_ANY_JSON_BODY = {
    "requestBody": {
        "required": True,
        "description": "Any JSON value, including null; stored without validation.",
        "content": {"application/json": {"schema": {}}},
    }
}


class DocumentResponse(BaseModel):
    """Schema describing a stored document as returned to clients."""

    id: int = Field(..., description="Primary key assigned by the database.")
    external_id: str = Field(..., description="Public identifier generated at insert time.")
    payload: Any = Field(..., description="The JSON value exactly as it was stored.")
    created_at: str = Field(..., description="UTC timestamp assigned by the database.")


def get_document_store(request: Request) -> DocumentStore:
    store = getattr(request.app.state, "document_store", None)
    if store is None:
        logger.error("Document store requested before startup completed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="store_not_ready")
    return store


def _reject_constant(name: str) -> NoReturn:
    raise ValueError(f"{name} is not valid JSON")


def parse_json_body(raw: bytes) -> Any:
    """Decode a request body into a JSON value.

    ``null`` is a valid document. An empty body, malformed JSON and the
    ``NaN``/``Infinity`` literals Python would otherwise accept are 422s.
    """

    if not raw.strip():
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="empty_body")
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as exc:
        logger.info("Rejected request body", extra={"error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_json"
        ) from exc


@router.post("/store", response_model=DocumentResponse, openapi_extra=_ANY_JSON_BODY)
async def create_document(request: Request) -> DocumentResponse:
    store = get_document_store(request)
    payload = parse_json_body(await request.body())
    # The pool may block while waiting for a lease; keep that off the event loop.
    document = await run_in_threadpool(store.create, payload)
    logger.debug("Returning stored document", extra={"external_id": document.external_id})
    return DocumentResponse(**document.to_json())


__all__ = ["router", "DocumentResponse", "get_document_store", "parse_json_body"]
