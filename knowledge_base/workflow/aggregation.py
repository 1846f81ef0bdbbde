"""Multi-source aggregation into the singleton Unified Profile."""

import json
import uuid
from typing import List, Optional

from knowledge_base.config import MERGE_STRATEGY, MERGE_STRATEGY_DETERMINISTIC, MERGE_STRATEGY_LLM
from knowledge_base.database.repository import StoredSource
from knowledge_base.errors import InputError
from knowledge_base.profiling.instructions import ROLE_MERGE
from knowledge_base.profiling.merge import ProfileMerger
from knowledge_base.profiling.output_parser import parse_profile_output
from knowledge_base.profiling.profile_models import PartialProfile, UnifiedProfile
from knowledge_base.timeutils import utc_now
from knowledge_base.workflow.base_session import BasePipelineSession
from knowledge_base.workflow.events import EventSink
from knowledge_base.workflow.state_machine import Signal

NO_SOURCES_MESSAGE = "No knowledge sources found. Please add a resume or LinkedIn profile first."


class AggregationSession(BasePipelineSession):
    """Loads every completed source for a user and merges them.

    With the deterministic strategy the rule engine's result is relayed as a
    single token. With the ``llm`` strategy the merge role is streamed from
    the extraction service, the result is schema-validated, and then
    reconciled against the deterministic baseline.
    """

    pipeline_kind = "aggregation"
    source_type = "unified_profile"

    def __init__(
        self,
        user_id: str,
        request_id: Optional[str] = None,
        merger: Optional[ProfileMerger] = None,
        strategy: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(user_id, request_id=request_id or f"aggregate-{uuid.uuid4()}", **kwargs)
        self.merger = merger or ProfileMerger()
        self.strategy = (strategy or MERGE_STRATEGY).lower()
        if self.strategy not in (MERGE_STRATEGY_DETERMINISTIC, MERGE_STRATEGY_LLM):
            raise ValueError(f"Unknown merge strategy: {self.strategy}")
        self.sources: List[StoredSource] = []
        self.unified: Optional[UnifiedProfile] = None
        self.skills: List[str] = []

    def _validate(self) -> None:
        # The source set is loaded in-stream; an empty set is reported as an error event
        pass

    async def _execute(self, sink: EventSink) -> None:
        await self._status(sink, "fetching", "Fetching knowledge sources...")
        self.sources = self.gateway.list_completed_sources(self.user_id)
        if not self.sources:
            raise InputError(NO_SOURCES_MESSAGE)
        self._transition(Signal.ACQUIRED)

        count = len(self.sources)
        await self._status(
            sink,
            "aggregating",
            f"Aggregating {count} sources...",
            sources_count=count,
        )

        updated_at = utc_now()
        refs = [s.to_source_ref() for s in self.sources]
        baseline = self.merger.merge([s.parsed_data for s in self.sources], refs, updated_at)

        if self.strategy == MERGE_STRATEGY_LLM:
            raw_output = await self._stream_extraction(sink, ROLE_MERGE, self._merge_content())
            candidate = parse_profile_output(raw_output, PartialProfile)
            unified = self.merger.reconcile(candidate, baseline)
        else:
            await self._relay_output(sink, baseline.model_dump_json())
            unified = baseline

        self.unified = unified
        self.skills = self.merger.skill_index(unified)

        await self._status(sink, "saving", "Saving unified profile...")
        self._ensure_active()
        self.gateway.upsert_unified_profile(self.user_id, unified, self.skills, updated_at)

        await self._complete(
            sink,
            unified.model_dump(mode="json"),
            {"userId": self.user_id, "sourcesCount": count},
        )

    def _merge_content(self) -> str:
        return json.dumps(
            [
                {
                    "source_type": s.source_type,
                    "source_identifier": s.source_identifier,
                    "created_at": s.created_at.isoformat(),
                    "parsed_data": s.parsed_data.model_dump(mode="json", exclude_defaults=True),
                }
                for s in self.sources
            ],
            indent=2,
        )
