"""FastAPI endpoints for knowledge source ingestion and aggregation."""

import logging
import uuid
from http import HTTPStatus
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ValidationError

from knowledge_base import __version__
from knowledge_base.api.auth import get_current_user_id
from knowledge_base.config import (
    MANUAL_TEXT_SUMMARY_CHARS,
    UPLOAD_MAX_BYTES,
    get_cors_origins,
)
from knowledge_base.database.repository import KnowledgeSourceGateway
from knowledge_base.errors import InputError, PipelineError
from knowledge_base.profiling.extraction import ExtractionClient
from knowledge_base.profiling.instructions import ROLE_PROJECT_DOCUMENT, ROLE_RESUME
from knowledge_base.profiling.merge import ProfileMerger
from knowledge_base.profiling.profile_models import PartialProfile, UnifiedProfile
from knowledge_base.timeutils import utc_now
from knowledge_base.workflow import (
    SSE_HEADERS,
    AggregationSession,
    BasePipelineSession,
    DocumentIngestionSession,
    GitHubIngestionSession,
    LinkedInIngestionSession,
    stream_session,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Knowledge Base API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PATCH, DELETE, OPTIONS",
}


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Failures before the stream opens are answered synchronously."""
    logger.warning(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content={"error": exc.message},
        headers={"Access-Control-Allow-Origin": "*"},
    )


_gateway: Optional[KnowledgeSourceGateway] = None
_extraction_client: Optional[ExtractionClient] = None


def get_gateway() -> KnowledgeSourceGateway:
    global _gateway
    if _gateway is None:
        _gateway = KnowledgeSourceGateway()
    return _gateway


def get_extraction_client() -> ExtractionClient:
    global _extraction_client
    if _extraction_client is None:
        _extraction_client = ExtractionClient()
    return _extraction_client


class LinkedInStreamRequest(BaseModel):
    url: Optional[str] = None
    sourceId: Optional[str] = None


class GitHubStreamRequest(BaseModel):
    username: Optional[str] = None
    url: Optional[str] = None
    sourceId: Optional[str] = None


class ManualTextRequest(BaseModel):
    content: Optional[str] = None


def _open_stream(session: BasePipelineSession) -> StreamingResponse:
    """Validate the request, then hand the session to a streaming response."""
    session.prepare()
    return StreamingResponse(
        stream_session(session),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "Access-Control-Allow-Origin": "*"},
    )


async def _read_upload(file: Optional[UploadFile]) -> Optional[bytes]:
    if file is None:
        return None
    # Read one byte past the limit so oversized uploads are detected without buffering them
    data = await file.read(UPLOAD_MAX_BYTES + 1)
    if len(data) > UPLOAD_MAX_BYTES:
        raise InputError(f"File too large (limit {UPLOAD_MAX_BYTES} bytes)")
    return data


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.options("/knowledge-sources")
@app.options("/knowledge-sources/{path:path}")
async def preflight(path: str = "") -> Response:
    return Response(status_code=HTTPStatus.OK, headers=PREFLIGHT_HEADERS)


async def _document_stream(
    role: str,
    source_id: Optional[str],
    file: Optional[UploadFile],
    user_id: str,
    gateway: KnowledgeSourceGateway,
    extraction_client: ExtractionClient,
) -> StreamingResponse:
    session = DocumentIngestionSession(
        user_id,
        source_id,
        file_name=file.filename if file is not None else None,
        file_bytes=await _read_upload(file),
        role=role,
        gateway=gateway,
        extraction_client=extraction_client,
    )
    return _open_stream(session)


@app.post("/knowledge-sources/resume/stream")
async def stream_resume(
    sourceId: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
    extraction_client: ExtractionClient = Depends(get_extraction_client),
) -> StreamingResponse:
    """Stream extraction of an uploaded resume PDF."""
    return await _document_stream(
        ROLE_RESUME, sourceId, file, user_id, gateway, extraction_client
    )


@app.post("/knowledge-sources/project/stream")
async def stream_project_document(
    sourceId: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
    extraction_client: ExtractionClient = Depends(get_extraction_client),
) -> StreamingResponse:
    """Stream extraction of an uploaded project document PDF."""
    return await _document_stream(
        ROLE_PROJECT_DOCUMENT, sourceId, file, user_id, gateway, extraction_client
    )


@app.post("/knowledge-sources/linkedin/stream")
async def stream_linkedin(
    body: Optional[LinkedInStreamRequest] = None,
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
    extraction_client: ExtractionClient = Depends(get_extraction_client),
) -> StreamingResponse:
    """Stream extraction of a LinkedIn profile fetched by URL."""
    body = body or LinkedInStreamRequest()
    session = LinkedInIngestionSession(
        user_id,
        body.sourceId,
        url=body.url,
        gateway=gateway,
        extraction_client=extraction_client,
    )
    return _open_stream(session)


@app.post("/knowledge-sources/github/stream")
async def stream_github(
    body: Optional[GitHubStreamRequest] = None,
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
    extraction_client: ExtractionClient = Depends(get_extraction_client),
) -> StreamingResponse:
    """Stream extraction of a GitHub profile and its repositories."""
    body = body or GitHubStreamRequest()
    session = GitHubIngestionSession(
        user_id,
        body.sourceId,
        username=body.username or body.url,
        gateway=gateway,
        extraction_client=extraction_client,
    )
    return _open_stream(session)


@app.post("/knowledge-sources/aggregate/stream")
async def stream_aggregate(
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
    extraction_client: ExtractionClient = Depends(get_extraction_client),
) -> StreamingResponse:
    """Stream aggregation of every completed source into the Unified Profile."""
    session = AggregationSession(
        user_id,
        gateway=gateway,
        extraction_client=extraction_client,
    )
    return _open_stream(session)


@app.post("/knowledge-sources/text")
async def add_manual_text(
    body: Optional[ManualTextRequest] = None,
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
):
    """Store free text as a knowledge source without extraction."""
    content = ((body.content if body else None) or "").strip()
    if not content:
        raise InputError("Missing content")

    logger.info(f"Processing manual text context for user {user_id}")
    profile = PartialProfile(about=content, summary=content[:MANUAL_TEXT_SUMMARY_CHARS])
    stored = gateway.insert_source(
        source_id=str(uuid.uuid4()),
        user_id=user_id,
        source_type="manual_text",
        profile=profile,
        source_identifier="Manual Context",
        metadata={"length": len(content)},
    )
    return {
        "source": stored.model_dump(mode="json"),
        "message": "Manual context added successfully",
    }


@app.get("/knowledge-sources")
async def list_knowledge_sources(
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
):
    """List the caller's knowledge sources, most recent first."""
    sources = gateway.list_sources(user_id)
    return {"sources": [s.model_dump(mode="json") for s in sources]}


@app.get("/knowledge-sources/aggregate")
async def get_aggregated_profile(
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
):
    """Return the caller's Unified Profile (``null`` before the first aggregation)."""
    stored = gateway.get_unified_profile(user_id)
    if stored is None:
        return {"aggregated_profile": None, "skills": []}
    logger.info(
        f"Retrieved unified profile for user {user_id}: "
        f"{len(stored.profile.sources)} sources, updated at {stored.updated_at}"
    )
    return {
        "aggregated_profile": stored.profile.model_dump(mode="json"),
        "skills": stored.skills,
    }


# Maintained by aggregation; a manual edit never overrides them
PROFILE_SYSTEM_FIELDS = ("sources", "schema_version", "updated_at")
MANUAL_EDIT_SOURCE = "manual_edit"


@app.patch("/knowledge-sources/aggregate")
async def update_aggregated_profile(
    updates: Any = Body(None),
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
):
    """Apply a partial manual edit to the caller's Unified Profile.

    Top-level fields in the body replace the stored ones. The result is
    validated as a Unified Profile, the skill index is rebuilt and
    ``updated_at`` is refreshed.
    """
    if not isinstance(updates, dict) or not updates:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Invalid update data")

    stored = gateway.get_unified_profile(user_id)
    if stored is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="No aggregated profile found")

    logger.info(f"Updating unified profile for user {user_id}: {sorted(updates)}")
    data: Dict[str, Any] = stored.profile.model_dump(mode="json")
    data.update({k: v for k, v in updates.items() if k not in PROFILE_SYSTEM_FIELDS})
    try:
        profile = UnifiedProfile.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Rejected profile update for user {user_id}: {e.error_count()} errors")
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="Invalid update data"
        ) from e

    now = utc_now()
    profile.stamp_source(MANUAL_EDIT_SOURCE)
    profile.updated_at = now
    saved = gateway.upsert_unified_profile(
        user_id, profile, ProfileMerger().skill_index(profile), now
    )
    return {
        "aggregated_profile": saved.profile.model_dump(mode="json"),
        "skills": saved.skills,
        "message": "Profile updated successfully",
    }


@app.delete("/knowledge-sources/{source_id}")
async def delete_knowledge_source(
    source_id: str,
    user_id: str = Depends(get_current_user_id),
    gateway: KnowledgeSourceGateway = Depends(get_gateway),
):
    """Delete one of the caller's knowledge sources.

    The Unified Profile is not recomputed; the next aggregation drops the source.
    """
    if not gateway.delete_source(user_id, source_id):
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"Knowledge source {source_id} not found",
        )
    return {"message": "Knowledge source deleted successfully"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
