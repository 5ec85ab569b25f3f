import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from m365_core.auth import TokenManager
from m365_core.config import Settings
from m365_core.context import AppContext
from m365_core.graph import GraphClient


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None, text: Optional[str] = None):
        self.status_code = status_code
        self.headers = headers or {}
        self.reason = "Fake"
        self._body = body
        if text is not None:
            self.text = text
        elif body is None:
            self.text = ""
        else:
            self.text = json.dumps(body)
        self.content = self.text.encode()

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records every call."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, headers=None, params=None, json=None, data=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers,
                "params": params,
                "json": json,
                "data": data,
                "timeout": timeout,
            }
        )
        if not self.responses:
            return FakeResponse(200, {})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class FakeMsalApp:
    def __init__(self, results: Optional[List[Dict[str, Any]]] = None):
        self.results = list(results or [])
        self.calls: List[List[str]] = []

    def acquire_token_for_client(self, scopes):
        self.calls.append(scopes)
        if self.results:
            return self.results.pop(0)
        return {"access_token": f"token-{len(self.calls)}", "expires_in": 3600}


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings():
    return Settings(tenant_id="tenant", client_id="client", client_secret="secret")


@pytest.fixture
def msal_app():
    return FakeMsalApp()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tokens(settings, msal_app, clock):
    return TokenManager(settings, app=msal_app, clock=clock)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def graph(tokens, session, sleeps):
    async def record_sleep(delay):
        sleeps.append(delay)

    return GraphClient(tokens, session=session, sleep=record_sleep)


@pytest.fixture
def ctx(settings, graph):
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=AppContext(settings=settings, graph=graph)))


def result_text(result) -> str:
    return result.content[0].text
