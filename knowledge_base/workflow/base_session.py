"""Base pipeline session shared by every ingestion and aggregation entry point."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from knowledge_base.database.repository import KnowledgeSourceGateway
from knowledge_base.errors import PipelineError
from knowledge_base.langfuse_utils import (
    create_pipeline_trace_context,
    get_langfuse_client,
    observe,
    propagate_attributes,
)
from knowledge_base.profiling.extraction import ExtractionClient
from knowledge_base.workflow.events import (
    EventSink,
    PipelineEvent,
    complete_event,
    error_event,
    status_event,
    token_event,
)
from knowledge_base.workflow.state_machine import (
    PipelinePhase,
    PipelineStateMachine,
    Signal,
)

logger = logging.getLogger(__name__)


class SessionCancelled(Exception):
    """The client went away; nothing may be persisted."""


class BasePipelineSession(ABC):
    """Owns one request's lifecycle and is the sole producer of its events.

    The session is driven in two halves:

    - ``prepare()`` runs before the event stream opens. It records the
      authenticated user and validates the request. ``AuthError`` and
      ``InputError`` raised here propagate to the caller, which answers with
      a synchronous error response.
    - ``run(sink)`` runs after the stream opens. Every failure is converted
      into exactly one ``error`` event; success ends with exactly one
      ``complete`` event. The sink is closed afterwards in both cases.

    Subclasses implement ``_validate()`` and ``_execute()``.
    """

    pipeline_kind = "ingestion"
    source_type: Optional[str] = None

    def __init__(
        self,
        user_id: str,
        request_id: Optional[str] = None,
        gateway: Optional[KnowledgeSourceGateway] = None,
        extraction_client: Optional[ExtractionClient] = None,
    ):
        """Initialize the session.

        Args:
            user_id: Authenticated user id
            request_id: Client source id (or a generated id for aggregation)
            gateway: Persistence gateway (defaults to the process database)
            extraction_client: Streaming extraction client
        """
        self.user_id = user_id
        self.request_id = request_id
        self.gateway = gateway or KnowledgeSourceGateway()
        self.extraction = extraction_client or ExtractionClient()
        self.state = PipelineStateMachine()
        self.raw_output = ""
        self.error: Optional[str] = None
        self._cancelled = False
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # Lifecycle

    def prepare(self) -> None:
        """Pre-stream half: Init -> Authenticated -> Acquiring."""
        self._transition(Signal.AUTHENTICATED)
        try:
            self._validate()
        except PipelineError as e:
            self.error = e.message
            self._transition(Signal.FAILURE)
            raise
        self._transition(Signal.INPUT_ACCEPTED)

    @observe()
    async def run(self, sink: EventSink) -> None:
        """In-stream half: acquisition, extraction, finalization."""
        trace_context = create_pipeline_trace_context(
            request_id=self.request_id,
            pipeline_kind=self.pipeline_kind,
            source_type=self.source_type,
            user_id=self.user_id,
        )
        with propagate_attributes(**trace_context):
            try:
                if self.state.phase is PipelinePhase.INIT:
                    self.prepare()
                await self._execute(sink)
            except asyncio.CancelledError:
                self.cancel()
                if not self.state.is_terminal:
                    self._transition(Signal.FAILURE)
                self.logger.info(f"[{self.request_id}] Session cancelled by client")
                raise
            except SessionCancelled:
                if not self.state.is_terminal:
                    self._transition(Signal.FAILURE)
                self.logger.info(f"[{self.request_id}] Session cancelled before persistence")
                return
            except PipelineError as e:
                self.logger.error(f"[{self.request_id}] {e.kind} failure: {e.message}")
                await self._fail(sink, e.message)
            except Exception as e:
                self.logger.error(f"[{self.request_id}] Unexpected failure: {e}", exc_info=True)
                await self._fail(sink, str(e) or e.__class__.__name__)
            finally:
                self._record_trace_output()

        await sink.close()

    def cancel(self) -> None:
        """Mark the session as abandoned; pending persistence is skipped."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @abstractmethod
    def _validate(self) -> None:
        """Check required request fields. Raise InputError if any are missing."""

    @abstractmethod
    async def _execute(self, sink: EventSink) -> None:
        """Acquire, extract and finalize, emitting events along the way."""

    # Helpers for subclasses

    def _transition(self, signal: Signal) -> PipelinePhase:
        source = self.state.phase
        target = self.state.fire(signal)
        if signal is not Signal.TOKEN:
            self.logger.info(
                f"[{self.request_id}] {source.value} -> {target.value} ({signal.value})"
            )
        return target

    async def _emit(self, sink: EventSink, event: PipelineEvent) -> None:
        await sink.emit(event)

    async def _status(self, sink: EventSink, status: str, message: str, **extra: Any) -> None:
        await self._emit(sink, status_event(status, message, **extra))

    async def _stream_extraction(self, sink: EventSink, role: str, content: str) -> str:
        """Relay extraction fragments as token events and return the raw output.

        Enters Streaming on the first fragment and Finalizing on stream end.
        """

        async def on_token(fragment: str) -> None:
            if self.state.phase is PipelinePhase.EXTRACTING:
                self._transition(Signal.EXTRACTION_ACCEPTED)
            self._transition(Signal.TOKEN)
            await self._emit(sink, token_event(fragment))

        raw_output = await self.extraction.extract(role, content, on_token)
        return self._end_stream(raw_output)

    async def _relay_output(self, sink: EventSink, output: str) -> str:
        """Emit locally produced output as a single token and end the stream."""
        self._transition(Signal.EXTRACTION_ACCEPTED)
        if output:
            self._transition(Signal.TOKEN)
            await self._emit(sink, token_event(output))
        return self._end_stream(output)

    def _end_stream(self, raw_output: str) -> str:
        if self.state.phase is PipelinePhase.EXTRACTING:
            self._transition(Signal.EXTRACTION_ACCEPTED)
        self.raw_output = raw_output
        self._transition(Signal.STREAM_END)
        self.logger.info(
            f"[{self.request_id}] Stream ended after {self.state.token_count} tokens"
        )
        return raw_output

    def _ensure_active(self) -> None:
        if self._cancelled:
            raise SessionCancelled()

    async def _complete(
        self, sink: EventSink, profile: Dict[str, Any], metadata: Dict[str, Any]
    ) -> None:
        self._transition(Signal.FINALIZED)
        await self._emit(sink, complete_event(profile, metadata))

    async def _fail(self, sink: EventSink, message: str) -> None:
        self.error = message
        if not self.state.is_terminal:
            self._transition(Signal.FAILURE)
        await self._emit(sink, error_event(message))

    def _record_trace_output(self) -> None:
        langfuse = get_langfuse_client()
        if langfuse is None:
            return
        try:
            langfuse.update_current_trace(
                output={
                    "phase": self.state.phase.value,
                    "token_count": self.state.token_count,
                    "error": self.error,
                }
            )
        except Exception as e:
            logger.warning("Failed to update Langfuse trace: %s", e)
