"""Degraded local responder used when the text backend cannot be reached."""

from __future__ import annotations

import asyncio
import logging

from aicollab.tasks.capabilities import Capability
from aicollab.tasks.models import Task

logger = logging.getLogger("aicollab.agents.fallback")


class FallbackResponder:
    """Produces a deterministic, clearly-labelled answer without a model.

    *latency* adds an artificial delay so callers see realistic timing.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency

    async def respond(self, task: Task) -> str:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        logger.debug("Fallback response for task %s", task.id)

        query = task.query.strip()
        if task.requires(Capability.CODE_GENERATION):
            return (
                "# The text-generation backend is unavailable; no code was generated.\n"
                f"# Request: {query}\n"
                "raise NotImplementedError"
            )
        if task.requires(Capability.TEXT_ANALYSIS):
            words = query.split()
            return (
                "Analysis unavailable (text-generation backend offline).\n"
                f"Input length: {len(words)} words, {len(query)} characters."
            )
        if task.requires(Capability.CONVERSATIONAL):
            return (
                "I can't reach the language model right now, so I can't give a full answer. "
                "Please try again shortly."
            )
        return f"Unable to process the request right now: {query}"
