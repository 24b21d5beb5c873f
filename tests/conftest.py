from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from astria_flow.client import AstriaClient
from astria_flow.config import AstriaSettings


class FakeAstria:
    """In-memory Astria API served through ``httpx.MockTransport``.

    Each route holds a queue of replies. Replies are consumed in order and the
    last one repeats. A reply is a JSON body (200), an ``httpx.Response``, or a
    callable receiving the request.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *replies: Any) -> None:
        self.routes.setdefault((method, path), []).extend(replies)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(599, json={"error": f"no fake route for {request.method} {request.url.path}"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, httpx.Response):
            return reply
        if callable(reply):
            return reply(request)
        return httpx.Response(200, json=reply)

    def count(self, method: str, path: str | None = None) -> int:
        return sum(
            1 for request in self.requests if request.method == method and (path is None or request.url.path == path)
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> AstriaSettings:
    return AstriaSettings(
        api_key="test-key",
        base_url="https://astria.test",
        timeout_seconds=5.0,
        max_polling_attempts=5,
        polling_delay_seconds=0.0,
        error_grace_attempts=2,
    )


@pytest.fixture
def fake_api() -> FakeAstria:
    return FakeAstria()


@pytest.fixture
def client(settings: AstriaSettings, fake_api: FakeAstria) -> AstriaClient:
    return AstriaClient(settings, transport=fake_api.transport)


@pytest.fixture
def make_tune() -> Callable[..., dict[str, Any]]:
    def _make_tune(tune_id: int, **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": tune_id,
            "title": f"Tune {tune_id}",
            "name": "style",
            "model_type": "lora",
            "trained_at": "2026-01-01T00:00:00.000Z",
            "started_training_at": "2025-12-31T23:00:00.000Z",
            "expires_at": None,
            "created_at": "2025-12-31T22:00:00.000Z",
            "token": None,
            "branch": "flux1",
            "base_tune_id": 1504944,
            "orig_images": [],
        }
        payload.update(overrides)
        return payload

    return _make_tune
