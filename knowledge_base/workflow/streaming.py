"""Bridge a pipeline session to a ``text/event-stream`` response body."""

import asyncio
import logging
from contextlib import suppress
from typing import AsyncGenerator, Optional

from knowledge_base.workflow.base_session import BasePipelineSession
from knowledge_base.workflow.events import QueueEventSink, format_sse

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def stream_session(
    session: BasePipelineSession,
    sink: Optional[QueueEventSink] = None,
) -> AsyncGenerator[str, None]:
    """Run ``session`` in its own task and yield its events as SSE frames.

    If the consumer stops iterating (client disconnect), the session is
    cancelled: in-flight extraction is aborted and nothing is persisted.
    """
    sink = sink or QueueEventSink()
    task = asyncio.create_task(session.run(sink))
    try:
        async for event in sink.events():
            yield format_sse(event)
        await task
    finally:
        if not task.done():
            logger.info("Client disconnected from session %s; cancelling", session.request_id)
            session.cancel()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
