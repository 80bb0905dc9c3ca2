"""Shared fixtures: settings pointed at tmp_path, and a recording fake for outbound HTTP."""

import json
from typing import Callable, List

import httpx
import pytest

from relay.config import Settings, load_destinations


class FakeRemote:
    """
    httpx.MockTransport wrapper that records every outbound request.
    `responder(request) -> httpx.Response` decides what the "remote" answers.
    """

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []
        self._responder = responder
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    def json_bodies(self):
        return [json.loads(r.content) if r.content else None for r in self.requests]


@pytest.fixture
def make_remote():
    return FakeRemote


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        ACCOUNT_A_API="tok-a",
        ACCOUNT_B_API="tok-b",
        ACCOUNT_C_API=None,
        ACCOUNT_D_API="tok-d",
        ACCOUNT_D_LOCATION_ID="loc-123",
        HUBSPOT_ACCESS_TOKEN="hs-token",
        HUBSPOT_B_ACCESS_TOKEN="hs-b-token",
        WEBHOOK_SECRET=None,
        LOG_DIR=str(tmp_path / "logs"),
        DESTINATIONS_PATH=str(tmp_path / "missing.yaml"),
        PII_REDACTION_ENABLED=True,
    )


@pytest.fixture
def destinations(settings):
    return {p.name: p for p in load_destinations(settings)}
