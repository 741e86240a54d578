"""
Batch generation with bounded concurrency.

Requests are processed in fixed-size groups: every generation in a group
runs concurrently, then the orchestrator pauses before starting the next
group. This keeps the load on the model server bounded without a
rate-limiter dependency.
"""

import asyncio
import logging
from typing import Optional, Sequence

from config import Settings, get_settings
from core.generator import GenerationOutcome, ProtocolGenerator
from exceptions import BatchGenerationError
from models import GeneratedProtocol, GenerationRequest


logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """
    Runs many generation requests through one ProtocolGenerator.

    Two failure policies:
    - agenerate_batch: fail-fast, raises BatchGenerationError for the first
      failed request and starts no further groups
    - agenerate_batch_outcomes: never raises, one outcome per request
    """

    def __init__(
        self,
        generator: ProtocolGenerator,
        settings: Optional[Settings] = None,
        batch_size: Optional[int] = None,
        delay_seconds: Optional[float] = None
    ):
        self.generator = generator
        self.settings = settings or get_settings()
        self.batch_size = batch_size or self.settings.batch_size
        self.delay_seconds = (
            self.settings.batch_delay_seconds if delay_seconds is None else delay_seconds
        )

    def _groups(self, requests: Sequence[GenerationRequest]):
        for start in range(0, len(requests), self.batch_size):
            yield start, requests[start:start + self.batch_size]

    async def _run_groups(
        self,
        requests: Sequence[GenerationRequest],
        fail_fast: bool
    ) -> list[GenerationOutcome]:
        outcomes: list[GenerationOutcome] = []
        group_count = (len(requests) + self.batch_size - 1) // self.batch_size

        for number, (start, group) in enumerate(self._groups(requests), start=1):
            if number > 1 and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)

            logger.info(
                f"Batch group {number}/{group_count}: generating {len(group)} protocol(s)"
            )
            group_outcomes = await asyncio.gather(
                *(self.generator.agenerate_outcome(request) for request in group)
            )
            outcomes.extend(group_outcomes)

            failed = [
                (start + offset, outcome)
                for offset, outcome in enumerate(group_outcomes)
                if not outcome.ok
            ]
            if failed:
                logger.warning(f"Batch group {number}/{group_count}: {len(failed)} failure(s)")
                if fail_fast:
                    index, outcome = failed[0]
                    raise BatchGenerationError(index=index, cause=outcome.error) from outcome.error

        return outcomes

    async def agenerate_batch(
        self,
        requests: Sequence[GenerationRequest]
    ) -> list[GeneratedProtocol]:
        """
        Generate protocols for every request, in input order.

        Raises:
            BatchGenerationError: For the first failed request (index + cause)
        """
        outcomes = await self._run_groups(requests, fail_fast=True)
        logger.info(f"Batch complete: {len(outcomes)} protocol(s) generated")
        return [outcome.protocol for outcome in outcomes]

    async def agenerate_batch_outcomes(
        self,
        requests: Sequence[GenerationRequest]
    ) -> list[GenerationOutcome]:
        """Generate every request and report each success or failure, in input order."""
        outcomes = await self._run_groups(requests, fail_fast=False)
        succeeded = sum(1 for outcome in outcomes if outcome.ok)
        logger.info(f"Batch complete: {succeeded}/{len(outcomes)} succeeded")
        return outcomes

    def generate_batch(self, requests: Sequence[GenerationRequest]) -> list[GeneratedProtocol]:
        """Blocking wrapper around agenerate_batch()."""
        return asyncio.run(self.agenerate_batch(requests))
