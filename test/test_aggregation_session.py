"""Tests for multi-source aggregation into the Unified Profile."""

import json
from datetime import datetime, timedelta

import pytest

from knowledge_base.config import MERGE_STRATEGY_LLM
from knowledge_base.database.models import KnowledgeSource
from knowledge_base.database.repository import GenericRepository
from knowledge_base.database.session import with_db_session
from knowledge_base.errors import PersistenceError
from knowledge_base.profiling.profile_models import PartialProfile
from knowledge_base.timeutils import utc_now
from knowledge_base.workflow.aggregation import NO_SOURCES_MESSAGE, AggregationSession
from knowledge_base.workflow.events import (
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_STATUS,
    EVENT_TOKEN,
    RecordingSink,
)
from knowledge_base.workflow.state_machine import PipelinePhase

SOURCES = [
    # (id, type, identifier, days ago, partial profile)
    (
        "src-resume",
        "resume",
        "cv.pdf",
        3,
        {
            "name": "Ada Lovelace",
            "phone": "+44 20 7946 0958",
            "skills": ["Python", "communication"],
            "experience": [
                {"job_title": "analyst", "company": "engine co", "start_date": "2019", "end_date": "2021"}
            ],
        },
    ),
    (
        "src-linkedin",
        "linkedin",
        "https://www.linkedin.com/in/ada",
        2,
        {
            "name": "Ada L.",
            "skills": ["python", "Leadership"],
            "experience": [
                {
                    "job_title": "Analyst",
                    "company": "Engine Co",
                    "start_date": "2019-04",
                    "end_date": "2021-09",
                    "description": "Analytical engine programs",
                },
                {"job_title": "Lead", "company": "Notes Ltd", "start_date": "2022", "end_date": "Present"},
            ],
        },
    ),
    (
        "src-github",
        "github",
        "ada",
        1,
        {"github_username": "ada", "technical_skills": ["Docker"], "projects": [{"name": "engine"}]},
    ),
]


@pytest.fixture
def seeded_sources(gateway, user_id):
    """Three completed sources with distinct creation times."""
    now = utc_now()
    for source_id, source_type, identifier, days_ago, profile in SOURCES:
        gateway.insert_source(
            source_id=source_id,
            user_id=user_id,
            source_type=source_type,
            profile=PartialProfile.model_validate(profile).stamp_source(source_type),
            source_identifier=identifier,
        )
        with with_db_session() as session:
            row = GenericRepository(session, KnowledgeSource).get(source_id)
            row.created_at = now - timedelta(days=days_ago)
    return [s[0] for s in SOURCES]


async def _aggregate(user_id, gateway, **kwargs) -> RecordingSink:
    sink = RecordingSink()
    session = AggregationSession(user_id, gateway=gateway, **kwargs)
    session.prepare()
    await session.run(sink)
    return sink


async def test_no_sources_is_reported_in_stream_and_writes_nothing(gateway, user_id):
    sink = await _aggregate(user_id, gateway)

    assert [e.type for e in sink.events] == [EVENT_STATUS, EVENT_ERROR]
    assert sink.events[-1].payload == {"error": NO_SOURCES_MESSAGE}
    assert sink.events[-1].payload["error"].startswith("No knowledge sources found")
    assert gateway.count_unified_profiles(user_id) == 0


async def test_three_sources_aggregate_into_one_profile(gateway, user_id, seeded_sources):
    before = utc_now()
    sink = await _aggregate(user_id, gateway)

    assert sink.events[-1].type == EVENT_COMPLETE
    aggregating = [e for e in sink.of_type(EVENT_STATUS) if e.payload["status"] == "aggregating"]
    assert aggregating[0].payload["sources_count"] == 3

    payload = sink.events[-1].payload
    profile = payload["profile"]
    assert payload["metadata"] == {"userId": user_id, "sourcesCount": 3}
    assert len(profile["sources"]) == 3
    assert [s["type"] for s in profile["sources"]] == ["github", "linkedin", "resume"]
    assert datetime.fromisoformat(profile["updated_at"]) >= before

    assert profile["name"] == "Ada Lovelace"
    assert profile["phone"] == "+44 20 7946 0958"
    assert profile["github_username"] == "ada"
    assert len(profile["skills"]) == 3

    titles = [e["job_title"] for e in profile["experience"]]
    assert titles == ["Lead", "Analyst"]
    analyst = profile["experience"][1]
    assert analyst["description"] == "Analytical engine programs"
    assert analyst["end_date"] == {"year": 2021, "month": 9}
    assert analyst["source"] == "linkedin+resume"

    stored = gateway.get_unified_profile(user_id)
    assert stored.profile.model_dump(mode="json") == profile
    assert stored.skills == ["Python", "Leadership", "communication", "Docker"]


async def test_deterministic_merge_relays_the_profile_as_tokens(
    gateway, user_id, seeded_sources
):
    sink = await _aggregate(user_id, gateway)

    tokens = sink.tokens_text()
    assert json.loads(tokens) == sink.events[-1].payload["profile"]


async def test_repeated_aggregation_updates_the_single_row(gateway, user_id, seeded_sources):
    first = await _aggregate(user_id, gateway)
    second = await _aggregate(user_id, gateway)

    assert gateway.count_unified_profiles(user_id) == 1
    stored = gateway.get_unified_profile(user_id)
    assert len(stored.profile.sources) == len(gateway.list_sources(user_id))

    first_profile = dict(first.events[-1].payload["profile"])
    second_profile = dict(second.events[-1].payload["profile"])
    first_profile.pop("updated_at")
    second_profile.pop("updated_at")
    assert first_profile == second_profile


async def test_new_source_is_picked_up_on_reaggregation(gateway, user_id, seeded_sources):
    await _aggregate(user_id, gateway)
    gateway.insert_source(
        source_id="src-text",
        user_id=user_id,
        source_type="manual_text",
        profile=PartialProfile(about="Enjoys poetry"),
        source_identifier="Manual Context",
    )
    sink = await _aggregate(user_id, gateway)

    assert sink.events[-1].payload["metadata"]["sourcesCount"] == 4
    stored = gateway.get_unified_profile(user_id)
    assert len(stored.profile.sources) == 4
    assert stored.profile.about == "Enjoys poetry"


async def test_llm_merge_is_validated_and_reconciled(
    gateway, user_id, seeded_sources, scripted_client
):
    client = scripted_client(
        "```json\n",
        '{"name": "Ada King, Countess of Lovelace", ',
        '"skills": ["python", "Leadership", "Poetry"]}',
        "\n```",
    )
    sink = await _aggregate(
        user_id, gateway, strategy=MERGE_STRATEGY_LLM, extraction_client=client
    )

    assert sink.events[-1].type == EVENT_COMPLETE
    assert len(sink.of_type(EVENT_TOKEN)) >= 1
    profile = sink.events[-1].payload["profile"]
    assert profile["name"] == "Ada King, Countess of Lovelace"
    assert profile["skills"] == ["Python", "Leadership", "Poetry"]
    # Left empty by the resolver, backfilled from the deterministic merge
    assert profile["phone"] == "+44 20 7946 0958"
    assert [e["job_title"] for e in profile["experience"]] == ["Lead", "Analyst"]
    assert len(profile["sources"]) == 3

    merge_prompt = str(client.prompts[0])
    assert "cv.pdf" in merge_prompt


async def test_llm_merge_records_all_carry_provenance(
    gateway, user_id, seeded_sources, scripted_client
):
    client = scripted_client(
        '{"experience": [{"job_title": "Analyst", "company": "Engine Co", "end_date": "2021-09"}, ',
        '{"job_title": "Lead", "company": "Notes Ltd", "is_current": true}], ',
        '"projects": [{"name": "engine"}, {"name": "Difference machine"}]}',
    )
    sink = await _aggregate(
        user_id, gateway, strategy=MERGE_STRATEGY_LLM, extraction_client=client
    )

    assert sink.events[-1].type == EVENT_COMPLETE
    stored = gateway.get_unified_profile(user_id).profile
    records = [*stored.experience, *stored.education, *stored.certifications, *stored.projects]
    assert records
    assert all(record.source for record in records)

    by_title = {e.job_title: e.source for e in stored.experience}
    assert by_title == {"Analyst": "linkedin+resume", "Lead": "linkedin"}
    by_name = {p.name: p.source for p in stored.projects}
    assert by_name == {"engine": "github", "Difference machine": "github+linkedin+resume"}


async def test_malformed_llm_merge_is_a_parse_failure(
    gateway, user_id, seeded_sources, scripted_client
):
    sink = await _aggregate(
        user_id,
        gateway,
        strategy=MERGE_STRATEGY_LLM,
        extraction_client=scripted_client('{"name": "Ada", "experience": [{"job_'),
    )

    assert sink.events[-1].type == EVENT_ERROR
    assert "Failed to parse" in sink.events[-1].payload["error"]
    assert len(sink.of_type(EVENT_ERROR)) == 1
    assert gateway.count_unified_profiles(user_id) == 0


async def test_persistence_failure_is_reported_in_stream(gateway, user_id, seeded_sources):
    class BrokenGateway(type(gateway)):
        def upsert_unified_profile(self, *args, **kwargs):
            raise PersistenceError("Database save failed: OperationalError")

    sink = RecordingSink()
    session = AggregationSession(user_id, gateway=BrokenGateway())
    await session.run(sink)

    assert sink.events[-1].payload == {"error": "Database save failed: OperationalError"}
    assert session.state.phase is PipelinePhase.FAILED


def test_unknown_strategy_is_rejected(gateway, user_id):
    with pytest.raises(ValueError):
        AggregationSession(user_id, gateway=gateway, strategy="vote")
