"""Semantic extraction client backed by pydantic-ai streaming agents."""

import logging
from typing import Awaitable, Callable, Dict, Optional, Union

from pydantic_ai import Agent
from pydantic_ai.models import Model

from knowledge_base.config import (
    DEFAULT_EXTRACTION_MODEL,
    DEFAULT_MERGE_MODEL,
    EXTRACTION_TEMPERATURE,
)
from knowledge_base.errors import ExtractionError
from knowledge_base.profiling.instructions import (
    ROLE_MERGE,
    build_user_prompt,
    get_instructions,
)

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Awaitable[None]]
ModelLike = Union[str, Model]


class ExtractionClient:
    """Streams role-specific extractions from the transformation service.

    One pydantic-ai ``Agent`` (plain text output) is built lazily per role.
    Every fragment is forwarded to ``on_token`` as soon as it arrives, and
    the accumulated text is returned when the stream ends. Output is never
    trusted: callers must parse and validate it.
    """

    def __init__(
        self,
        model: Optional[ModelLike] = None,
        merge_model: Optional[ModelLike] = None,
        temperature: float = EXTRACTION_TEMPERATURE,
    ):
        """Initialize the extraction client.

        Args:
            model: pydantic-ai model (or model string) for per-source extraction
            merge_model: Model used for the multi-source merge role
            temperature: Sampling temperature for every role
        """
        self.model = model or DEFAULT_EXTRACTION_MODEL
        self.merge_model = merge_model or (model or DEFAULT_MERGE_MODEL)
        self.temperature = temperature
        self._agents: Dict[str, Agent] = {}

    def _get_agent(self, role: str) -> Agent:
        if role not in self._agents:
            self._agents[role] = Agent(
                model=self.merge_model if role == ROLE_MERGE else self.model,
                output_type=str,
                system_prompt=get_instructions(role),
                model_settings={"temperature": self.temperature},
            )
        return self._agents[role]

    async def extract(self, role: str, content: str, on_token: TokenCallback) -> str:
        """Run one streaming extraction.

        Args:
            role: Instruction schema to apply (resume, linkedin, github, ...)
            content: Acquired raw content for the source
            on_token: Awaited once per received fragment, in arrival order

        Returns:
            The full raw output (concatenation of every fragment)

        Raises:
            ExtractionError: If the service call fails
        """
        prompt = build_user_prompt(role, content)
        fragments = []
        logger.info(f"Starting {role} extraction stream ({len(content)} chars of input)")
        try:
            agent = self._get_agent(role)
            async with agent.run_stream(prompt) as result:
                async for fragment in result.stream_text(delta=True, debounce_by=None):
                    if not fragment:
                        continue
                    fragments.append(fragment)
                    await on_token(fragment)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error(f"{role} extraction failed: {e}", exc_info=True)
            raise ExtractionError(f"Extraction service call failed: {e}") from e

        output = "".join(fragments)
        logger.info(
            f"{role} extraction stream ended ({len(fragments)} fragments, {len(output)} chars)"
        )
        return output
