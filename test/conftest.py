"""Shared fixtures: in-memory SQLite store, scripted extraction service, PDF builder."""

import os

# Must be set before knowledge_base.database.session creates the engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LANGFUSE_ENABLED"] = "false"
os.environ["LANGFUSE_TRACING_ENABLED"] = "false"

from datetime import timedelta

import fitz  # PyMuPDF
import pytest
from pydantic_ai.models.function import FunctionModel

from knowledge_base.database.create_tables import create_tables, drop_tables
from knowledge_base.database.models import AuthSession, User
from knowledge_base.database.repository import KnowledgeSourceGateway
from knowledge_base.database.session import with_db_session
from knowledge_base.profiling.extraction import ExtractionClient
from knowledge_base.timeutils import utc_now

TEST_USER_ID = "user-1"
TEST_TOKEN = "valid-token"


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    create_tables()
    yield
    drop_tables()


@pytest.fixture
def user_id() -> str:
    """A user with a valid bearer session."""
    with with_db_session() as session:
        session.add(User(id=TEST_USER_ID, name="Ada Lovelace", email="ada@example.com"))
        session.add(
            AuthSession(
                id="session-1",
                userId=TEST_USER_ID,
                token=TEST_TOKEN,
                expiresAt=utc_now() + timedelta(days=1),
            )
        )
    return TEST_USER_ID


@pytest.fixture
def gateway() -> KnowledgeSourceGateway:
    return KnowledgeSourceGateway()


@pytest.fixture
def scripted_client():
    """Factory: an ExtractionClient whose service streams the given chunks.

    Prompts received by the service are appended to ``client.prompts``.
    """

    def build(*chunks: str) -> ExtractionClient:
        prompts = []

        async def stream(messages, info):
            prompts.append(messages)
            for chunk in chunks:
                yield chunk

        client = ExtractionClient(model=FunctionModel(stream_function=stream))
        client.prompts = prompts
        return client

    return build


@pytest.fixture
def failing_client():
    """Factory: an ExtractionClient whose service call raises."""

    def build(message: str = "service unavailable") -> ExtractionClient:
        async def stream(messages, info):
            raise RuntimeError(message)
            yield ""  # makes this an async generator

        return ExtractionClient(model=FunctionModel(stream_function=stream))

    return build


@pytest.fixture
def build_pdf():
    """Factory: PDF bytes with one page per text."""

    def build(page_texts) -> bytes:
        doc = fitz.open()
        for text in page_texts:
            page = doc.new_page()
            page.insert_text((72, 72), text)
        data = doc.tobytes()
        doc.close()
        return data

    return build
