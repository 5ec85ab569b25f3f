"""
App-only authentication against Azure AD.

Tokens are acquired with the OAuth2 client-credentials grant through MSAL and
cached per scope until they are within `margin` seconds of expiring.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import msal

from .config import Settings
from .errors import AuthenticationError
from .logging_setup import get_logger

logger = get_logger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
AZURE_SCOPE = "https://management.azure.com/.default"

SAFETY_MARGIN_SECONDS = 60

AAD_ERROR_HINTS = {
    "unauthorized_client": "This usually means:\n1. CLIENT_ID is incorrect\n2. CLIENT_SECRET is incorrect\n3. App registration is not properly configured",
    "invalid_client": "This usually means:\n1. CLIENT_ID is incorrect\n2. CLIENT_SECRET is incorrect or expired\n3. App registration doesn't exist",
    "invalid_tenant": "This usually means:\n1. TENANT_ID is incorrect",
    "invalid_scope": "This usually means:\n1. The requested resource is not available to this tenant",
}


@dataclass
class CachedToken:
    scope: str
    token: str
    expires_at: float

    def is_valid(self, now: float, margin: float = SAFETY_MARGIN_SECONDS) -> bool:
        return now + margin < self.expires_at


class TokenManager:
    """Per-scope token cache with single-flight refresh.

    Concurrent callers asking for the same expired scope share one refresh;
    different scopes refresh independently.
    """

    def __init__(
        self,
        settings: Settings,
        app: Optional[msal.ConfidentialClientApplication] = None,
        clock: Callable[[], float] = time.time,
        margin: float = SAFETY_MARGIN_SECONDS,
    ):
        self.settings = settings
        self.margin = margin
        self._app = app
        self._clock = clock
        self._cache: Dict[str, CachedToken] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    def _client_app(self) -> msal.ConfidentialClientApplication:
        if self._app is None:
            self._app = msal.ConfidentialClientApplication(
                self.settings.client_id,
                authority=self.settings.authority,
                client_credential=self.settings.client_secret,
            )
        return self._app

    def cached(self, scope: str) -> Optional[CachedToken]:
        return self._cache.get(scope)

    async def get_access_token(self, scope: str = GRAPH_SCOPE) -> str:
        entry = self._cache.get(scope)
        if entry and entry.is_valid(self._clock(), self.margin):
            return entry.token

        task = self._inflight.get(scope)
        if task is None:
            task = asyncio.ensure_future(self._refresh(scope))
            self._inflight[scope] = task
            task.add_done_callback(lambda _t: self._inflight.pop(scope, None))
        return await asyncio.shield(task)

    async def _refresh(self, scope: str) -> str:
        logger.debug("token_requested", scope=scope)
        result = await asyncio.to_thread(self._acquire, scope)

        if "error" in result:
            code = result.get("error")
            message = f"Failed to acquire token: {result.get('error_description', code)}"
            hint = AAD_ERROR_HINTS.get(code)
            if hint:
                message += f"\n\n{hint}"
            raise AuthenticationError(message, status=401, details={"error": code, "scope": scope})

        token = result.get("access_token")
        expires_in = result.get("expires_in")
        if not token or expires_in is None:
            raise AuthenticationError(
                "Token response is missing access_token or expires_in",
                status=401,
                details={"scope": scope},
            )

        entry = CachedToken(scope=scope, token=token, expires_at=self._clock() + int(expires_in))
        self._cache[scope] = entry
        logger.info("token_acquired", scope=scope, expires_in=expires_in)
        return entry.token

    def _acquire(self, scope: str) -> dict:
        try:
            return self._client_app().acquire_token_for_client(scopes=[scope])
        except ValueError as e:
            # MSAL raises ValueError when the authority cannot be resolved.
            raise AuthenticationError(
                f"Invalid tenant: {e}\n\nCheck your TENANT_ID",
                status=401,
                details={"scope": scope},
            )
