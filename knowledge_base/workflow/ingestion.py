"""Single-source ingestion sessions: uploaded documents and remote profiles."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from knowledge_base.config import (
    GITHUB_MAX_REPOS,
    PAGE_STATUS_INTERVAL,
    UPLOAD_MAX_BYTES,
    get_apify_token,
    get_github_token,
)
from knowledge_base.errors import AcquisitionError, InputError
from knowledge_base.profiling.instructions import (
    ROLE_GITHUB,
    ROLE_LINKEDIN,
    ROLE_PROJECT_DOCUMENT,
    ROLE_RESUME,
)
from knowledge_base.profiling.output_parser import parse_profile_output
from knowledge_base.profiling.pdf_parser import PAGE_SEPARATOR, PDFParser
from knowledge_base.profiling.profile_models import PartialProfile
from knowledge_base.profiling.remote_sources import (
    extract_github_username,
    fetch_github_profile,
    fetch_linkedin_profile,
    linkedin_extraction_payload,
    normalize_linkedin_url,
)
from knowledge_base.workflow.base_session import BasePipelineSession
from knowledge_base.workflow.events import EventSink
from knowledge_base.workflow.state_machine import Signal

# role -> (source_type, label used in status messages)
DOCUMENT_ROLES = {
    ROLE_RESUME: ("resume", "resume"),
    ROLE_PROJECT_DOCUMENT: ("project_document", "project document"),
}


class IngestionSession(BasePipelineSession):
    """Shared finalization for sessions that produce one KnowledgeSource."""

    role: str = ""

    def __init__(self, user_id: str, source_id: Optional[str], **kwargs):
        super().__init__(user_id, request_id=source_id, **kwargs)
        self.source_id = source_id
        self.profile: Optional[PartialProfile] = None

    async def _finalize(
        self,
        sink: EventSink,
        raw_output: str,
        source_identifier: Optional[str],
        raw_content: Optional[dict],
        metadata: Dict[str, Any],
    ) -> None:
        """Parse, validate and persist the extraction, then emit completion."""
        profile = parse_profile_output(raw_output, source_type=self.source_type)
        self.profile = profile

        await self._status(sink, "saving", "Saving to knowledge base...")
        self._ensure_active()
        self.gateway.insert_source(
            source_id=self.source_id,
            user_id=self.user_id,
            source_type=self.source_type,
            profile=profile,
            source_identifier=source_identifier,
            raw_content=raw_content,
            metadata=metadata,
        )
        await self._complete(
            sink,
            profile.model_dump(mode="json"),
            {"sourceId": self.source_id, **metadata, "userId": self.user_id},
        )


class DocumentIngestionSession(IngestionSession):
    """Uploaded PDF -> page text -> streamed extraction -> KnowledgeSource."""

    def __init__(
        self,
        user_id: str,
        source_id: Optional[str],
        file_name: Optional[str],
        file_bytes: Optional[bytes],
        role: str = ROLE_RESUME,
        pdf_parser: Optional[PDFParser] = None,
        **kwargs,
    ):
        if role not in DOCUMENT_ROLES:
            raise ValueError(f"Unsupported document role: {role}")
        super().__init__(user_id, source_id, **kwargs)
        self.role = role
        self.source_type, self.label = DOCUMENT_ROLES[role]
        self.file_name = file_name
        self.file_bytes = file_bytes
        self.pdf_parser = pdf_parser or PDFParser()
        self.acquired_text = ""
        self.page_count = 0

    def _validate(self) -> None:
        if not self.file_bytes or not self.source_id:
            raise InputError("Missing file or sourceId")
        if len(self.file_bytes) > UPLOAD_MAX_BYTES:
            raise InputError(
                f"File too large: {len(self.file_bytes)} bytes "
                f"(limit {UPLOAD_MAX_BYTES} bytes)"
            )

    async def _execute(self, sink: EventSink) -> None:
        await self._status(sink, "uploading", "Extracting text...")
        self.acquired_text, self.page_count = await self._acquire_text(sink)
        self._transition(Signal.ACQUIRED)

        await self._status(sink, "parsing", f"Analyzing {self.label}...")
        raw_output = await self._stream_extraction(sink, self.role, self.acquired_text)

        await self._finalize(
            sink,
            raw_output,
            source_identifier=self.file_name,
            raw_content={"text": self.acquired_text},
            metadata={
                "fileName": self.file_name,
                "fileSize": len(self.file_bytes),
                "pageCount": self.page_count,
            },
        )

    async def _acquire_text(self, sink: EventSink) -> Tuple[str, int]:
        """Decode pages in order, reporting progress every few pages.

        Each page is decoded in a worker thread (text layer or OCR), so other
        sessions keep streaming while a large or scanned document is read.
        """
        texts: List[str] = []
        total = 0
        pages = self.pdf_parser.iter_pages(self.file_bytes)
        try:
            while True:
                page = await asyncio.to_thread(next, pages, None)
                if page is None:
                    break
                texts.append(page.text)
                total = page.total
                if page.number % PAGE_STATUS_INTERVAL == 0 or page.number == page.total:
                    await self._status(
                        sink,
                        "uploading",
                        f"Extracted {page.number}/{page.total} pages...",
                    )
        except (RuntimeError, ValueError) as e:
            # PyMuPDF raises FileDataError (a RuntimeError) for undecodable input
            raise AcquisitionError(f"Failed to read document: {e}") from e
        finally:
            # A cancelled await leaves the worker thread inside the generator
            if not pages.gi_running:
                pages.close()

        if total == 0:
            raise AcquisitionError("Document has no pages")
        self.logger.info(f"[{self.request_id}] Decoded {total} pages from {self.file_name}")
        return PAGE_SEPARATOR.join(texts), total


class LinkedInIngestionSession(IngestionSession):
    """LinkedIn URL -> provider snapshot -> streamed extraction -> KnowledgeSource."""

    role = ROLE_LINKEDIN
    source_type = "linkedin"

    def __init__(
        self,
        user_id: str,
        source_id: Optional[str],
        url: Optional[str],
        api_token: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(user_id, source_id, **kwargs)
        self.raw_url = url
        self.url: Optional[str] = None
        self.api_token = api_token

    def _validate(self) -> None:
        if not self.raw_url or not self.source_id:
            raise InputError("Missing LinkedIn URL or sourceId")
        self.url = normalize_linkedin_url(self.raw_url)

    async def _execute(self, sink: EventSink) -> None:
        await self._status(sink, "fetching", "Fetching LinkedIn profile...")
        token = self.api_token if self.api_token is not None else get_apify_token()
        snapshot = await asyncio.to_thread(fetch_linkedin_profile, self.url, token)
        self._transition(Signal.ACQUIRED)

        await self._status(sink, "parsing", "Analyzing LinkedIn profile...")
        content = json.dumps(linkedin_extraction_payload(snapshot), indent=2, default=str)
        raw_output = await self._stream_extraction(sink, self.role, content)

        await self._finalize(
            sink,
            raw_output,
            source_identifier=self.url,
            raw_content=snapshot,
            metadata={"url": self.url},
        )


class GitHubIngestionSession(IngestionSession):
    """GitHub user -> profile and repositories -> streamed extraction -> KnowledgeSource."""

    role = ROLE_GITHUB
    source_type = "github"

    def __init__(
        self,
        user_id: str,
        source_id: Optional[str],
        username: Optional[str],
        api_token: Optional[str] = None,
        max_repos: int = GITHUB_MAX_REPOS,
        **kwargs,
    ):
        super().__init__(user_id, source_id, **kwargs)
        self.raw_username = username
        self.username: Optional[str] = None
        self.api_token = api_token
        self.max_repos = max_repos

    def _validate(self) -> None:
        if not self.raw_username or not self.source_id:
            raise InputError("Missing GitHub username or sourceId")
        self.username = extract_github_username(self.raw_username)

    async def _execute(self, sink: EventSink) -> None:
        await self._status(
            sink, "fetching", f"Fetching GitHub profile for {self.username}..."
        )
        token = self.api_token if self.api_token is not None else get_github_token()
        snapshot = await asyncio.to_thread(
            fetch_github_profile, self.username, token, self.max_repos
        )
        self._transition(Signal.ACQUIRED)

        repo_count = len(snapshot["repos"])
        await self._status(
            sink,
            "parsing",
            f"Analyzing GitHub profile and {repo_count} repositories...",
        )
        content = json.dumps(snapshot, indent=2, default=str)
        raw_output = await self._stream_extraction(sink, self.role, content)

        url = f"https://github.com/{self.username}"
        await self._finalize(
            sink,
            raw_output,
            source_identifier=self.username,
            raw_content=snapshot,
            metadata={"username": self.username, "url": url, "repoCount": repo_count},
        )
