"""Pipeline session runtime: state machine, events and concrete sessions."""

from knowledge_base.workflow.aggregation import AggregationSession
from knowledge_base.workflow.base_session import BasePipelineSession
from knowledge_base.workflow.events import (
    EventSink,
    PipelineEvent,
    QueueEventSink,
    RecordingSink,
    format_sse,
)
from knowledge_base.workflow.ingestion import (
    DocumentIngestionSession,
    GitHubIngestionSession,
    LinkedInIngestionSession,
)
from knowledge_base.workflow.state_machine import (
    InvalidTransition,
    PipelinePhase,
    PipelineStateMachine,
    Signal,
    next_phase,
)
from knowledge_base.workflow.streaming import SSE_HEADERS, stream_session

__all__ = [
    "AggregationSession",
    "BasePipelineSession",
    "DocumentIngestionSession",
    "EventSink",
    "GitHubIngestionSession",
    "InvalidTransition",
    "LinkedInIngestionSession",
    "PipelineEvent",
    "PipelinePhase",
    "PipelineStateMachine",
    "QueueEventSink",
    "RecordingSink",
    "SSE_HEADERS",
    "Signal",
    "format_sse",
    "next_phase",
    "stream_session",
]
