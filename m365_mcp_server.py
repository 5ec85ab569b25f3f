#!/usr/bin/env python3
"""
Microsoft 365 Core MCP Server
Exposes Microsoft 365 administration (Graph and Azure Resource Manager) as MCP tools and resources.
"""

import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from mcp.server import FastMCP

from m365_core.auth import TokenManager
from m365_core.config import ConfigurationError, Settings, load_settings
from m365_core.context import AppContext
from m365_core.graph import GraphClient
from m365_core.logging_setup import get_logger, setup_logging
from m365_core.prompts import register_prompts
from m365_core.resources import register_resources
from m365_core.tools import all_tools

logger = get_logger("m365_core.server")

EXAMPLE_ENV = """
Example .env file:
MS_TENANT_ID=your_tenant_id_here
MS_CLIENT_ID=your_client_id_here
MS_CLIENT_SECRET=your_client_secret_here"""


def make_lifespan(settings: Settings, graph: GraphClient):
    """Lifespan that hands the shared GraphClient to tools and releases its HTTP session on exit."""

    @asynccontextmanager
    async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
        logger.debug("session_started", tenant=settings.tenant_id)
        try:
            yield AppContext(settings=settings, graph=graph)
        finally:
            graph.close()

    return app_lifespan


def create_server(settings: Settings, graph: Optional[GraphClient] = None) -> FastMCP:
    """Create and configure the MCP server.

    One GraphClient (and with it one token cache) serves every tool call and
    resource read for the life of the process.
    """
    graph = graph or GraphClient(TokenManager(settings), timeout=settings.request_timeout)

    app = FastMCP(
        "m365-core",
        lifespan=make_lifespan(settings, graph),
        host=settings.host,
        port=settings.port,
        stateless_http=settings.stateless,
    )

    for spec in all_tools():
        app.add_tool(
            spec.fn,
            name=spec.name,
            title=spec.title,
            description=spec.description,
            annotations=spec.annotations,
        )

    register_resources(app, graph)
    register_prompts(app)
    return app


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        print("Please set these variables in your .env file or environment.", file=sys.stderr)
        print(EXAMPLE_ENV, file=sys.stderr)
        sys.exit(1)

    setup_logging(settings.log_level)
    app = create_server(settings)
    transport = "streamable-http" if settings.use_http else "stdio"

    logger.info(
        "🚀 Starting M365 MCP Server",
        transport=transport,
        host=settings.host if settings.use_http else None,
        port=settings.port if settings.use_http else None,
        stateless=settings.stateless,
    )

    try:
        app.run(transport=transport)
    except KeyboardInterrupt:
        logger.info("👋 Server stopped by user")


if __name__ == "__main__":
    main()
