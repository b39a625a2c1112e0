"""Knowledge-base upload and management endpoints."""

from typing import List, Optional
import json

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status
import structlog

from ..core.errors import ErrorCode, InvalidRequestError, PayloadTooLargeError
from ..core.security import require_api_key
from ..models.schemas import (
    ErrorEnvelope,
    KnowledgeDocument,
    KnowledgeListResponse,
    KnowledgeUploadResponse,
)
from ..services.knowledge_base import KnowledgeBase

logger = structlog.get_logger()
router = APIRouter(
    dependencies=[Depends(require_api_key)],
    responses={
        401: {"model": ErrorEnvelope, "description": "Missing or invalid API key"},
        429: {"model": ErrorEnvelope, "description": "Rate limit exceeded"},
    },
)


def get_knowledge_base(request: Request) -> KnowledgeBase:
    return request.app.state.knowledge_base


def parse_tags(values: Optional[List[str]]) -> List[str]:
    """Accept tags as repeated form fields, a JSON array string or comma-separated text."""
    tags: List[str] = []
    for value in values or []:
        value = value.strip()
        if not value:
            continue
        items = None
        if value.startswith("[") and value.endswith("]"):
            try:
                items = [str(item) for item in json.loads(value)]
            except json.JSONDecodeError:
                items = None
        if items is None:
            items = value.split(",")
        for item in items:
            item = item.strip().lower()
            if item and item not in tags:
                tags.append(item)
    return tags


@router.post(
    "/upload",
    response_model=KnowledgeUploadResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="uploadKnowledge",
    summary="Upload knowledge",
    description="Add a file, a URL, or both to the knowledge base",
    responses={
        400: {"model": ErrorEnvelope, "description": "Neither file nor url given, or the url is not public"},
        413: {"model": ErrorEnvelope, "description": "File too large"},
        415: {"model": ErrorEnvelope, "description": "Unsupported file type"},
        502: {"model": ErrorEnvelope, "description": "The url could not be fetched"},
    },
)
async def upload_knowledge(
    file: Optional[UploadFile] = File(default=None),
    url: Optional[str] = Form(default=None),
    tags: Optional[List[str]] = Form(default=None),
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
) -> KnowledgeUploadResponse:
    """Ingest an uploaded file and/or a URL.

    Returns:
        Newly stored documents and ids of documents that were already present
    """
    url = url.strip() if url else None
    has_file = file is not None and bool(file.filename)
    if not has_file and not url:
        raise InvalidRequestError("Provide a file, a url, or both", code=ErrorCode.MISSING_SOURCE)

    tag_list = parse_tags(tags)

    # Every source is validated and fetched before anything is stored
    extracted = []
    if has_file:
        data = await file.read(knowledge_base.max_bytes + 1)
        if len(data) > knowledge_base.max_bytes:
            raise PayloadTooLargeError(f"File exceeds maximum size of {knowledge_base.max_bytes} bytes")
        extracted.append(knowledge_base.extract_file(file.filename, data, content_type=file.content_type))
    if url:
        extracted.append(await knowledge_base.extract_url(url))

    results = await knowledge_base.store(extracted, tags=tag_list)

    documents = [doc for doc, created in results if created]
    duplicates = [doc.id for doc, created in results if not created]
    logger.info("Knowledge uploaded", stored=len(documents), duplicates=len(duplicates), tags=tag_list)
    return KnowledgeUploadResponse(documents=documents, duplicates=duplicates)


@router.get(
    "/documents",
    response_model=KnowledgeListResponse,
    summary="List knowledge documents",
    description="Page through stored documents; offset is 1-indexed",
)
async def list_documents(
    offset: int = Query(default=1, ge=0),
    limit: int = Query(default=50, ge=0, le=500),
    tag: Optional[str] = None,
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
) -> KnowledgeListResponse:
    documents, total = knowledge_base.list_documents(offset=offset, limit=limit, tag=tag)
    return KnowledgeListResponse(
        documents=documents,
        total=total,
        offset=offset,
        limit=limit,
        has_more=offset - 1 + len(documents) < total,
    )


@router.get(
    "/documents/{document_id}",
    response_model=KnowledgeDocument,
    summary="Get knowledge document",
)
async def get_document(
    document_id: str,
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
) -> KnowledgeDocument:
    return knowledge_base.get(document_id)


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete knowledge document",
)
async def delete_document(
    document_id: str,
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
) -> None:
    # Returning None lets FastAPI keep the rate limit headers set by the guard
    await knowledge_base.delete(document_id)
