"""Tests for single-source ingestion sessions driven end to end."""

import asyncio
import json
import threading
from unittest.mock import patch

import pytest
from pydantic_ai.models.function import FunctionModel

from knowledge_base.errors import AcquisitionError, InputError
from knowledge_base.profiling.extraction import ExtractionClient
from knowledge_base.profiling.instructions import ROLE_PROJECT_DOCUMENT
from knowledge_base.profiling.output_parser import parse_profile_output, strip_code_fence
from knowledge_base.profiling.pdf_parser import PAGE_SEPARATOR, PageText
from knowledge_base.workflow.events import (
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_STATUS,
    EVENT_TOKEN,
    RecordingSink,
)
from knowledge_base.workflow.ingestion import (
    DocumentIngestionSession,
    GitHubIngestionSession,
    LinkedInIngestionSession,
)
from knowledge_base.workflow.state_machine import PipelinePhase
from knowledge_base.workflow.streaming import stream_session

RESUME_CHUNKS = [
    "```json\n",
    '{"name": "Ada Lovelace", "email": "ada@example.com", ',
    '"skills": ["Python", "Analysis"], ',
    '"experience": [{"job_title": "Analyst", "company": "Engine Co", ',
    '"start_date": "2019-01", "end_date": "Present"}]}',
    "\n```",
]


def _assert_single_terminal_event(sink: RecordingSink):
    terminal = [e for e in sink.events if e.is_terminal]
    assert len(terminal) == 1
    assert sink.events[-1] is terminal[0]
    assert sink.closed


async def _run(session) -> RecordingSink:
    sink = RecordingSink()
    session.prepare()
    await session.run(sink)
    return sink


async def test_resume_ingestion_streams_tokens_and_persists(
    gateway, user_id, scripted_client, build_pdf
):
    pdf = build_pdf(["Ada Lovelace", "Analyst at Engine Co"])
    session = DocumentIngestionSession(
        user_id,
        "src-resume",
        file_name="ada.pdf",
        file_bytes=pdf,
        gateway=gateway,
        extraction_client=scripted_client(*RESUME_CHUNKS),
    )

    sink = await _run(session)

    _assert_single_terminal_event(sink)
    assert session.state.phase is PipelinePhase.COMPLETE
    assert sink.events[0].payload["status"] == "uploading"
    assert sink.of_type(EVENT_TOKEN)

    complete = sink.of_type(EVENT_COMPLETE)[0].payload
    assert complete["profile"]["name"] == "Ada Lovelace"
    assert complete["profile"]["experience"][0]["is_current"] is True
    assert complete["metadata"] == {
        "sourceId": "src-resume",
        "fileName": "ada.pdf",
        "fileSize": len(pdf),
        "pageCount": 2,
        "userId": user_id,
    }

    stored = gateway.list_sources(user_id)
    assert [s.id for s in stored] == ["src-resume"]
    assert stored[0].source_type == "resume"
    assert stored[0].source_identifier == "ada.pdf"
    assert stored[0].parsed_data.experience[0].source == "resume"


async def test_token_concatenation_reconstructs_the_completed_profile(
    gateway, user_id, scripted_client, build_pdf
):
    """Concatenated token payloads, fence-stripped, parse to the delivered profile."""
    session = DocumentIngestionSession(
        user_id,
        "src-1",
        file_name="cv.pdf",
        file_bytes=build_pdf(["Ada Lovelace"]),
        gateway=gateway,
        extraction_client=scripted_client(*RESUME_CHUNKS),
    )
    sink = await _run(session)

    tokens = sink.tokens_text()
    assert tokens == "".join(RESUME_CHUNKS)
    assert tokens == session.raw_output
    json.loads(strip_code_fence(tokens))
    reparsed = parse_profile_output(tokens, source_type="resume")
    assert reparsed.model_dump(mode="json") == sink.of_type(EVENT_COMPLETE)[0].payload["profile"]


async def test_twelve_page_document_reports_progress(
    gateway, user_id, scripted_client, build_pdf
):
    """A 12-page upload emits intermediate page-progress status before finishing."""
    pages = [f"Page {n} of the portfolio: project notes" for n in range(1, 13)]
    session = DocumentIngestionSession(
        user_id,
        "src-12",
        file_name="portfolio.pdf",
        file_bytes=build_pdf(pages),
        role=ROLE_PROJECT_DOCUMENT,
        gateway=gateway,
        extraction_client=scripted_client('{"projects": [{"name": "Notes"}]}'),
    )
    sink = await _run(session)

    progress = [
        e.payload["message"]
        for e in sink.of_type(EVENT_STATUS)
        if "pages" in e.payload["message"]
    ]
    assert progress == [
        "Extracted 5/12 pages...",
        "Extracted 10/12 pages...",
        "Extracted 12/12 pages...",
    ]
    first_terminal = next(i for i, e in enumerate(sink.events) if e.is_terminal)
    first_progress = next(
        i for i, e in enumerate(sink.events) if e.type == EVENT_STATUS and "pages" in e.payload["message"]
    )
    assert first_progress < first_terminal

    assert session.acquired_text == PAGE_SEPARATOR.join(pages)
    assert session.page_count == 12
    stored = gateway.list_sources(user_id)[0]
    assert stored.source_type == "project_document"
    assert stored.parsed_data.projects[0].source == "project_document"


class _ThreadRecordingParser:
    """Yields canned pages and records which thread decoded each one."""

    def __init__(self, texts):
        self.texts = texts
        self.threads = []
        self.closed = False

    def iter_pages(self, source):
        try:
            for number, text in enumerate(self.texts, start=1):
                self.threads.append(threading.get_ident())
                yield PageText(number=number, total=len(self.texts), text=text)
        finally:
            self.closed = True


async def test_pages_are_decoded_off_the_event_loop(gateway, user_id, scripted_client):
    parser = _ThreadRecordingParser(["Scanned page one", "Scanned page two"])
    session = DocumentIngestionSession(
        user_id,
        "src-scan",
        file_name="scan.pdf",
        file_bytes=b"%PDF-1.7",
        pdf_parser=parser,
        gateway=gateway,
        extraction_client=scripted_client('{"name": "Ada Lovelace"}'),
    )
    sink = await _run(session)

    assert sink.events[-1].type == EVENT_COMPLETE
    assert len(parser.threads) == 2
    assert threading.get_ident() not in parser.threads
    assert parser.closed
    assert session.acquired_text == PAGE_SEPARATOR.join(parser.texts)


async def test_malformed_output_fails_without_persisting(
    gateway, user_id, scripted_client, build_pdf
):
    """Unparseable output ends in one error event and no KnowledgeSource row."""
    session = DocumentIngestionSession(
        user_id,
        "src-bad",
        file_name="cv.pdf",
        file_bytes=build_pdf(["Ada"]),
        gateway=gateway,
        extraction_client=scripted_client('```json\n{"name": "Ada", "skills": ['),
    )
    sink = await _run(session)

    _assert_single_terminal_event(sink)
    assert sink.events[-1].type == EVENT_ERROR
    assert "Failed to parse" in sink.events[-1].payload["error"]
    assert session.state.phase is PipelinePhase.FAILED
    assert gateway.list_sources(user_id) == []


async def test_extraction_failure_is_reported_in_stream(
    gateway, user_id, failing_client, build_pdf
):
    session = DocumentIngestionSession(
        user_id,
        "src-1",
        file_name="cv.pdf",
        file_bytes=build_pdf(["Ada"]),
        gateway=gateway,
        extraction_client=failing_client("quota exceeded"),
    )
    sink = await _run(session)

    _assert_single_terminal_event(sink)
    assert "quota exceeded" in sink.events[-1].payload["error"]
    assert gateway.list_sources(user_id) == []


async def test_undecodable_document_is_an_acquisition_failure(
    gateway, user_id, scripted_client
):
    session = DocumentIngestionSession(
        user_id,
        "src-1",
        file_name="cv.pdf",
        file_bytes=b"definitely not a pdf",
        gateway=gateway,
        extraction_client=scripted_client("{}"),
    )
    sink = await _run(session)

    _assert_single_terminal_event(sink)
    assert sink.events[-1].payload["error"].startswith("Failed to read document")
    assert not sink.of_type(EVENT_TOKEN)


async def test_repeated_source_id_is_a_persistence_failure(
    gateway, user_id, scripted_client, build_pdf
):
    for expected in (EVENT_COMPLETE, EVENT_ERROR):
        session = DocumentIngestionSession(
            user_id,
            "same-id",
            file_name="cv.pdf",
            file_bytes=build_pdf(["Ada"]),
            gateway=gateway,
            extraction_client=scripted_client('{"name": "Ada"}'),
        )
        sink = await _run(session)
        assert sink.events[-1].type == expected

    assert sink.events[-1].payload["error"].startswith("Database save failed")
    assert len(gateway.list_sources(user_id)) == 1


def test_missing_file_fails_before_the_stream_opens(gateway, user_id):
    session = DocumentIngestionSession(
        user_id, "src-1", file_name=None, file_bytes=None, gateway=gateway
    )
    with pytest.raises(InputError) as exc_info:
        session.prepare()
    assert exc_info.value.message == "Missing file or sourceId"
    assert session.state.phase is PipelinePhase.FAILED


def test_oversized_upload_is_rejected(gateway, user_id):
    with patch("knowledge_base.workflow.ingestion.UPLOAD_MAX_BYTES", 10):
        session = DocumentIngestionSession(
            user_id, "src-1", file_name="big.pdf", file_bytes=b"x" * 11, gateway=gateway
        )
        with pytest.raises(InputError):
            session.prepare()


def test_unknown_document_role_is_rejected(user_id):
    with pytest.raises(ValueError):
        DocumentIngestionSession(user_id, "s", "f.pdf", b"x", role="merge")


class _CancelOnStatus(RecordingSink):
    """Cancels the session as soon as a given status is emitted."""

    def __init__(self, session, status):
        super().__init__()
        self.session = session
        self.status = status

    async def emit(self, event):
        await super().emit(event)
        if event.type == EVENT_STATUS and event.payload["status"] == self.status:
            self.session.cancel()


async def test_cancellation_suppresses_persistence(
    gateway, user_id, scripted_client, build_pdf
):
    session = DocumentIngestionSession(
        user_id,
        "src-1",
        file_name="cv.pdf",
        file_bytes=build_pdf(["Ada"]),
        gateway=gateway,
        extraction_client=scripted_client('{"name": "Ada"}'),
    )
    sink = _CancelOnStatus(session, "saving")
    session.prepare()
    await session.run(sink)

    assert session.cancelled
    assert session.state.phase is PipelinePhase.FAILED
    assert not sink.of_type(EVENT_COMPLETE)
    assert not sink.of_type(EVENT_ERROR)
    assert gateway.list_sources(user_id) == []


async def test_client_disconnect_aborts_in_flight_extraction(gateway, user_id, build_pdf):
    aborted = asyncio.Event()

    async def slow_stream(messages, info):
        yield '{"name": "Ada"'
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            aborted.set()
            raise
        yield "}"

    session = DocumentIngestionSession(
        user_id,
        "src-1",
        file_name="cv.pdf",
        file_bytes=build_pdf(["Ada"]),
        gateway=gateway,
        extraction_client=ExtractionClient(model=FunctionModel(stream_function=slow_stream)),
    )
    session.prepare()
    frames = stream_session(session)
    async for frame in frames:
        if frame.startswith("event: token"):
            break
    # Let the session reach the stalled extraction before disconnecting
    await asyncio.sleep(0.05)
    await frames.aclose()

    assert session.cancelled
    assert aborted.is_set()
    assert gateway.list_sources(user_id) == []


async def test_linkedin_ingestion(gateway, user_id, scripted_client):
    snapshot = {"basic_info": {"fullname": "Ada Lovelace"}, "experience": []}
    session = LinkedInIngestionSession(
        user_id,
        "src-li",
        url="linkedin.com/in/ada",
        api_token="token",
        gateway=gateway,
        extraction_client=scripted_client('{"name": "Ada Lovelace"}'),
    )
    with patch(
        "knowledge_base.workflow.ingestion.fetch_linkedin_profile", return_value=snapshot
    ) as fetch:
        sink = await _run(session)

    fetch.assert_called_once_with("https://linkedin.com/in/ada", "token")
    assert [e.payload["status"] for e in sink.of_type(EVENT_STATUS)] == [
        "fetching",
        "parsing",
        "saving",
    ]
    complete = sink.events[-1].payload
    assert complete["metadata"] == {
        "sourceId": "src-li",
        "url": "https://linkedin.com/in/ada",
        "userId": user_id,
    }
    stored = gateway.list_sources(user_id)[0]
    assert stored.source_type == "linkedin"
    assert stored.source_identifier == "https://linkedin.com/in/ada"


async def test_linkedin_fetch_failure_is_reported_in_stream(gateway, user_id, scripted_client):
    session = LinkedInIngestionSession(
        user_id,
        "src-li",
        url="ada",
        api_token="token",
        gateway=gateway,
        extraction_client=scripted_client("{}"),
    )
    with patch(
        "knowledge_base.workflow.ingestion.fetch_linkedin_profile",
        side_effect=AcquisitionError("LinkedIn fetch failed: 500"),
    ):
        sink = await _run(session)

    _assert_single_terminal_event(sink)
    assert sink.events[-1].payload == {"error": "LinkedIn fetch failed: 500"}
    assert gateway.list_sources(user_id) == []


def test_linkedin_requires_url_and_source_id(gateway, user_id):
    with pytest.raises(InputError):
        LinkedInIngestionSession(user_id, None, url="ada", gateway=gateway).prepare()
    with pytest.raises(InputError):
        LinkedInIngestionSession(user_id, "src", url="", gateway=gateway).prepare()


async def test_github_ingestion(gateway, user_id, scripted_client):
    snapshot = {
        "profile": {"login": "ada", "name": "Ada"},
        "repos": [{"name": "engine", "language": "Python"}],
    }
    session = GitHubIngestionSession(
        user_id,
        "src-gh",
        username="https://github.com/ada",
        api_token="",
        gateway=gateway,
        extraction_client=scripted_client(
            '{"github_username": "ada", "projects": [{"name": "engine"}]}'
        ),
    )
    with patch(
        "knowledge_base.workflow.ingestion.fetch_github_profile", return_value=snapshot
    ):
        sink = await _run(session)

    assert sink.events[-1].type == EVENT_COMPLETE
    assert sink.events[-1].payload["metadata"]["repoCount"] == 1
    stored = gateway.list_sources(user_id)[0]
    assert stored.source_type == "github"
    assert stored.source_identifier == "ada"
    assert stored.parsed_data.projects[0].source == "github"
