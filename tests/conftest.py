"""Shared fixtures: a scripted Case.dev API served through httpx.MockTransport."""

from __future__ import annotations

import json
from collections import defaultdict
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest

import caseflow.persistence as persistence
from caseflow.api import CaseClient
from caseflow.config import ApiConfig, CaseflowConfig, PollingConfig


class FakeApi:
    """Route table of scripted responses.

    Each route holds a queue; the last response repeats once the queue is
    down to one item. A response may be a dict (200 JSON), an
    ``httpx.Response``, an exception instance to raise, or a callable taking
    the request.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Any]] = defaultdict(list)
        self.calls: List[httpx.Request] = []

    def add(self, method: str, path: str, *responses: Any) -> "FakeApi":
        self.routes[(method.upper(), path)].extend(responses)
        return self

    def count(self, method: str, path: str) -> int:
        return sum(
            1 for r in self.calls if r.method == method.upper() and r.url.path == path
        )

    def body(self, index: int = -1) -> Any:
        return json.loads(self.calls[index].content)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": f"No route for {request.url.path}"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(request)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def client(self, **kwargs: Any) -> CaseClient:
        config = CaseflowConfig(
            api=ApiConfig(base_url="http://case.test", api_key="sk_test"),
            polling=PollingConfig(ocr_interval=0, transcription_interval=0, tabular_interval=0),
        )
        return CaseClient(config, transport=httpx.MockTransport(self.handle), **kwargs)


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def make_client(fake_api: FakeApi) -> Callable[..., CaseClient]:
    return fake_api.client


@pytest.fixture(autouse=True)
def _reset_repository(monkeypatch):
    monkeypatch.delenv("CASEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("CASE_API_URL", raising=False)
    monkeypatch.delenv("CASE_API_KEY", raising=False)
    monkeypatch.setenv("CASEFLOW_CONFIG", "/nonexistent/caseflow.yaml")
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None
