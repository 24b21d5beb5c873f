"""Submit generation jobs and poll them until they settle."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from astria_flow.client import AstriaClient
from astria_flow.config import AstriaSettings
from astria_flow.errors import ClassifiedError, ErrorKind
from astria_flow.models import Job, PromptParams

logger = logging.getLogger(__name__)


class PollPhase(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class JobPoller:
    """Run one generation job to a terminal state.

    The attempt budget and delay come from :class:`AstriaSettings` and are not
    adjustable per call. Transport failures during polling are not retried.
    Cancelling the awaiting task stops the loop at the pending request or
    sleep.
    """

    def __init__(self, client: AstriaClient, settings: AstriaSettings):
        self.client = client
        self.settings = settings

    async def run(self, model_id: int, params: PromptParams, *, timeout: float | None = None) -> Job:
        """Submit ``params`` under ``model_id`` and wait for images or an error.

        Args:
            model_id: Base tune id the prompt is submitted under.
            params: Generation payload.
            timeout: Optional overall deadline in seconds covering submission,
                every poll and every delay.

        Returns:
            The job in its COMPLETED or FAILED state.

        Raises:
            ClassifiedError: POLLING_TIMEOUT when the attempt budget runs out,
                TIMEOUT when the deadline passes, or any classified transport
                failure.
        """
        submitted: dict[str, int] = {}
        if timeout is None:
            return await self._run(model_id, params, submitted)
        try:
            return await asyncio.wait_for(self._run(model_id, params, submitted), timeout)
        except asyncio.TimeoutError:
            job_id = submitted.get("job_id")
            logger.warning("Job %s abandoned after %ss deadline", job_id, timeout)
            raise ClassifiedError(
                f"Prompt generation did not finish within {timeout}s",
                ErrorKind.TIMEOUT,
                details={"job_id": job_id, "model_id": model_id, "timeout_seconds": timeout},
            ) from None

    async def _run(self, model_id: int, params: PromptParams, submitted: dict[str, int]) -> Job:
        job = await self.client.create_prompt(model_id, params)
        submitted["job_id"] = job.id
        logger.info("Job %s %s", job.id, PollPhase.SUBMITTED.value)

        if job.images:
            logger.info("Job %s %s on submission (%d images)", job.id, PollPhase.COMPLETED.value, len(job.images))
            return job
        if job.error:
            logger.info("Job %s %s on submission: %s", job.id, PollPhase.FAILED.value, job.error)
            return job

        return await self._poll(model_id, job.id)

    async def _poll(self, model_id: int, job_id: int) -> Job:
        max_attempts = self.settings.max_polling_attempts
        logger.info("Job %s %s (max %d attempts)", job_id, PollPhase.POLLING.value, max_attempts)

        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(self.settings.polling_delay_seconds)
            logger.debug("Polling job %s: attempt %d/%d", job_id, attempt, max_attempts)
            job = await self.client.retrieve_prompt(model_id, job_id)

            if job.images:
                logger.info("Job %s %s: %d images generated", job_id, PollPhase.COMPLETED.value, len(job.images))
                return job
            if job.error:
                if attempt > self.settings.error_grace_attempts:
                    logger.info("Job %s %s: %s", job_id, PollPhase.FAILED.value, job.error)
                    return job
                logger.debug("Ignoring early error hint on job %s (attempt %d): %s", job_id, attempt, job.error)

        logger.warning("Job %s %s after %d attempts", job_id, PollPhase.TIMED_OUT.value, max_attempts)
        raise ClassifiedError(
            f"Prompt generation for job {job_id} timed out after {max_attempts} attempts",
            ErrorKind.POLLING_TIMEOUT,
            details={"job_id": job_id, "model_id": model_id, "max_attempts": max_attempts},
        )
