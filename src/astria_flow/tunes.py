"""Eligibility checks for LoRA tunes."""

from __future__ import annotations

import logging

from astria_flow.client import AstriaClient
from astria_flow.config import LORA_MODEL_TYPE
from astria_flow.errors import ClassifiedError, ErrorKind
from astria_flow.models import TuneRecord

logger = logging.getLogger(__name__)


async def validate_tune(client: AstriaClient, tune_id: int) -> TuneRecord:
    """Fetch a tune and check that it can be used as a LoRA adapter.

    Args:
        client: API client used for the fetch.
        tune_id: Positive tune id.

    Returns:
        The freshly fetched tune record.

    Raises:
        ClassifiedError: NOT_FOUND when the tune does not exist, VALIDATION
            when it is untrained or not a LoRA, or the classified fetch
            failure unchanged.
    """
    try:
        tune = await client.retrieve_tune(tune_id)
    except ClassifiedError:
        raise
    except Exception as exc:
        raise ClassifiedError(
            f"Failed to validate LoRA tune with ID {tune_id}: {exc}. "
            "This may be due to API access issues or network problems.",
            ErrorKind.API_ERROR,
        ) from exc

    if tune is None:
        raise ClassifiedError(
            f"LoRA tune with ID {tune_id} not found. "
            "Please check that the LoRA ID is correct and that you have access to it.",
            ErrorKind.NOT_FOUND,
        )

    if tune.trained_at is None:
        raise ClassifiedError(
            f"LoRA tune with ID {tune_id} exists but is not trained yet. "
            "Please wait for training to complete before using this LoRA.",
            ErrorKind.VALIDATION,
            details={"tune_id": tune_id, "status": tune.status},
        )

    if tune.model_type != LORA_MODEL_TYPE:
        raise ClassifiedError(
            f"Tune with ID {tune_id} is not a LoRA (type: {tune.model_type or 'unknown'}). "
            "Only LoRA type tunes can be used with this feature.",
            ErrorKind.VALIDATION,
            details={"tune_id": tune_id, "model_type": tune.model_type},
        )

    logger.debug("Validated LoRA tune %s (token=%r, branch=%r)", tune_id, tune.token, tune.branch)
    return tune


async def list_lora_tunes(client: AstriaClient, offset: int | None = None) -> list[TuneRecord]:
    """Return the trained LoRA tunes from one page of the tune listing."""
    tunes = await client.list_tunes(offset=offset)
    return [tune for tune in tunes if tune.is_usable]
