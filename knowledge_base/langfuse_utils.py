"""Langfuse utility functions for pipeline tracing."""

import logging
from typing import Any, Dict, Optional

from langfuse import Langfuse, get_client, observe, propagate_attributes

from knowledge_base.config import LangfuseConfig

logger = logging.getLogger(__name__)
langfuse_config = LangfuseConfig.from_env()


def get_langfuse_client() -> Optional[Langfuse]:
    """Get Langfuse client if enabled.

    Returns:
        Langfuse client instance or None if disabled
    """
    if not langfuse_config.enabled:
        return None

    try:
        return get_client()
    except Exception as e:
        logger.warning("Failed to get Langfuse client: %s", e)
        return None


def create_pipeline_trace_context(
    request_id: Optional[str] = None,
    pipeline_kind: Optional[str] = None,
    source_type: Optional[str] = None,
    user_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create context attributes for Langfuse trace propagation.

    Args:
        request_id: Client-supplied source id (or aggregation request id)
        pipeline_kind: Session class kind (ingestion, aggregation)
        source_type: KnowledgeSource type being produced
        user_id: Authenticated user id
        metadata: Additional metadata

    Returns:
        Dictionary of attributes for propagate_attributes
    """
    tags = []
    if pipeline_kind:
        tags.append(pipeline_kind)
    if source_type:
        tags.append(source_type)

    meta = dict(metadata or {})
    if request_id is not None:
        meta["request_id"] = request_id
    if pipeline_kind is not None:
        meta["pipeline_kind"] = pipeline_kind
    if source_type is not None:
        meta["source_type"] = source_type

    attrs: Dict[str, Any] = {
        "tags": tags,
        "metadata": meta,
    }
    if user_id is not None:
        attrs["user_id"] = user_id

    return attrs


__all__ = [
    "get_langfuse_client",
    "create_pipeline_trace_context",
    "observe",
    "propagate_attributes",
]
