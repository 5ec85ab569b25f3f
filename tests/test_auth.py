import asyncio

import pytest

from m365_core.auth import AZURE_SCOPE, GRAPH_SCOPE, CachedToken, TokenManager
from m365_core.errors import AuthenticationError
from tests.conftest import FakeMsalApp, run


class TestCachedToken:
    def test_valid_outside_margin(self):
        token = CachedToken(scope=GRAPH_SCOPE, token="t", expires_at=1000)
        assert token.is_valid(now=900, margin=60)

    def test_invalid_inside_margin(self):
        token = CachedToken(scope=GRAPH_SCOPE, token="t", expires_at=1000)
        assert not token.is_valid(now=950, margin=60)


class TestTokenManager:
    def test_reuses_cached_token(self, tokens, msal_app):
        first = run(tokens.get_access_token())
        second = run(tokens.get_access_token())

        assert first == second == "token-1"
        assert msal_app.calls == [[GRAPH_SCOPE]]

    def test_refreshes_within_safety_margin(self, tokens, msal_app, clock):
        run(tokens.get_access_token())
        clock.now += 3600 - 30

        assert run(tokens.get_access_token()) == "token-2"
        assert len(msal_app.calls) == 2

    def test_scopes_are_cached_separately(self, tokens, msal_app):
        run(tokens.get_access_token(GRAPH_SCOPE))
        run(tokens.get_access_token(AZURE_SCOPE))
        run(tokens.get_access_token(AZURE_SCOPE))

        assert msal_app.calls == [[GRAPH_SCOPE], [AZURE_SCOPE]]
        assert tokens.cached(AZURE_SCOPE).token == "token-2"

    def test_concurrent_callers_share_one_refresh(self, tokens, msal_app):
        async def scenario():
            return await asyncio.gather(*(tokens.get_access_token() for _ in range(5)))

        results = run(scenario())

        assert results == ["token-1"] * 5
        assert len(msal_app.calls) == 1

    def test_error_response_raises_authentication_error(self, settings, clock):
        app = FakeMsalApp([{"error": "invalid_client", "error_description": "bad secret"}])
        manager = TokenManager(settings, app=app, clock=clock)

        with pytest.raises(AuthenticationError) as excinfo:
            run(manager.get_access_token())

        assert "bad secret" in excinfo.value.message
        assert "CLIENT_SECRET" in excinfo.value.message
        assert excinfo.value.status == 401
        assert manager.cached(GRAPH_SCOPE) is None

    def test_missing_expiry_is_rejected(self, settings, clock):
        app = FakeMsalApp([{"access_token": "abc"}])
        manager = TokenManager(settings, app=app, clock=clock)

        with pytest.raises(AuthenticationError):
            run(manager.get_access_token())

    def test_failed_refresh_can_be_retried(self, settings, clock):
        app = FakeMsalApp([{"error": "invalid_tenant"}])
        manager = TokenManager(settings, app=app, clock=clock)

        with pytest.raises(AuthenticationError):
            run(manager.get_access_token())
        assert run(manager.get_access_token()) == "token-2"
