"""
Environment configuration for the M365 MCP server.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Each required setting accepts the MS_* name first, then the short legacy name.
REQUIRED_VARS = {
    "tenant_id": ("MS_TENANT_ID", "TENANT_ID"),
    "client_id": ("MS_CLIENT_ID", "CLIENT_ID"),
    "client_secret": ("MS_CLIENT_SECRET", "CLIENT_SECRET"),
}

TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationError(Exception):
    """Raised when required environment variables are missing or malformed."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = missing or []


def _get(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip()


def _first(*names: str) -> Optional[str]:
    for name in names:
        v = _get(name)
        if v:
            return v
    return None


def _flag(name: str) -> bool:
    return (_get(name, "") or "").lower() in TRUTHY


def _number(name: str, default, cast):
    raw = _get(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number, got '{raw}'")


@dataclass(frozen=True)
class Settings:
    tenant_id: str
    client_id: str
    client_secret: str

    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "info"
    use_http: bool = False
    stateless: bool = False
    request_timeout: float = 30.0

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"


def load_settings(load_env_file: bool = True) -> Settings:
    """Read settings from the environment (and a .env file when present).

    Raises ConfigurationError naming every missing credential variable.
    """
    if load_env_file:
        load_dotenv()

    values = {}
    missing = []
    for field_name, names in REQUIRED_VARS.items():
        v = _first(*names)
        if v is None:
            missing.append(names[0])
        values[field_name] = v

    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}",
            missing=missing,
        )

    return Settings(
        tenant_id=values["tenant_id"],
        client_id=values["client_id"],
        client_secret=values["client_secret"],
        host=_get("HOST", "127.0.0.1"),
        port=_number("PORT", 3000, int),
        log_level=(_get("LOG_LEVEL", "info") or "info").lower(),
        use_http=_flag("USE_HTTP"),
        stateless=_flag("STATELESS"),
        request_timeout=_number("GRAPH_TIMEOUT", 30.0, float),
    )
