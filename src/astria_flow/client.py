"""Typed Astria resource operations on top of :class:`AstriaTransport`."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from astria_flow.config import AstriaSettings
from astria_flow.errors import ClassifiedError, ErrorKind, classify
from astria_flow.models import CreateTuneRequest, Job, PromptParams, TuneRecord
from astria_flow.transport import AstriaTransport

logger = logging.getLogger(__name__)


def _require_positive(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ClassifiedError(f"Invalid {name}: {value!r} (expected a positive integer)", ErrorKind.VALIDATION)


def _parse(model: type[BaseModel], body: Any) -> Any:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise ClassifiedError(
            f"Unexpected {model.__name__} payload from the API",
            ErrorKind.API_ERROR,
            details=body,
        ) from exc


def _parse_list(model: type[BaseModel], body: Any) -> list[Any]:
    if not isinstance(body, list):
        raise ClassifiedError(f"Expected a list of {model.__name__} from the API", ErrorKind.API_ERROR, details=body)
    return [_parse(model, item) for item in body]


def build_tune_form(request: CreateTuneRequest) -> list[tuple[str, tuple]]:
    """Lay out a tune request as multipart parts with nested ``tune[...]`` names."""
    parts: list[tuple[str, tuple]] = [
        ("tune[title]", (None, request.title)),
        ("tune[name]", (None, request.name)),
        ("tune[preset]", (None, request.preset)),
    ]
    if request.branch:
        parts.append(("tune[branch]", (None, request.branch)))
    if request.callback:
        parts.append(("tune[callback]", (None, request.callback)))
    for key, value in request.characteristics.items():
        parts.append((f"tune[characteristics][{key}]", (None, value)))
    for url in request.image_urls:
        parts.append(("tune[image_urls][]", (None, url)))
    for image in request.images:
        parts.append(("tune[images][]", (image.filename, image.content, image.content_type)))
    return parts


class AstriaClient:
    """Astria tunes and prompts API.

    Every failure leaving this class is a :class:`ClassifiedError`.
    """

    def __init__(self, settings: AstriaSettings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.transport = AstriaTransport(settings, transport=transport)

    async def __aenter__(self) -> AstriaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def _call(self, action: str, method: str, path: str, **kwargs: Any) -> Any:
        try:
            return await self.transport.request(method, path, **kwargs)
        except Exception as exc:
            # TransportFailure maps to HTTP kinds; anything else httpx raises is SDK_ERROR.
            error = classify(exc)
            logger.error("[%s] Failed to %s: %s", error.kind.value, action, error.message)
            raise error from exc

    async def create_tune(self, request: CreateTuneRequest) -> TuneRecord:
        body = await self._call("create tune", "POST", "/tunes", files=build_tune_form(request))
        return _parse(TuneRecord, body)

    async def list_tunes(self, offset: int | None = None) -> list[TuneRecord]:
        params = {"offset": offset} if offset is not None else None
        body = await self._call("list tunes", "GET", "/tunes", params=params)
        return _parse_list(TuneRecord, body)

    async def retrieve_tune(self, tune_id: int) -> TuneRecord | None:
        """Fetch one tune; ``None`` when the service answers with an empty body."""
        _require_positive(tune_id, "tune_id")
        body = await self._call(f"retrieve tune {tune_id}", "GET", f"/tunes/{tune_id}")
        if not body:
            return None
        return _parse(TuneRecord, body)

    async def create_prompt(self, model_id: int, params: PromptParams) -> Job:
        _require_positive(model_id, "model_id")
        body = await self._call("create prompt", "POST", f"/tunes/{model_id}/prompts", json=params.to_payload())
        return _parse(Job, body)

    async def retrieve_prompt(self, model_id: int, prompt_id: int) -> Job:
        _require_positive(model_id, "model_id")
        _require_positive(prompt_id, "prompt_id")
        body = await self._call(
            f"retrieve prompt {prompt_id}",
            "GET",
            f"/tunes/{model_id}/prompts/{prompt_id}",
        )
        return _parse(Job, body)

    async def list_prompts(self, tune_id: int, offset: int | None = None) -> list[Job]:
        _require_positive(tune_id, "tune_id")
        params = {"offset": offset} if offset is not None else None
        body = await self._call(f"list prompts for tune {tune_id}", "GET", f"/tunes/{tune_id}/prompts", params=params)
        return _parse_list(Job, body)
