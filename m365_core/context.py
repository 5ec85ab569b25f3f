from dataclasses import dataclass

from mcp.server.fastmcp import Context

from .config import Settings
from .graph import GraphClient


@dataclass
class AppContext:
    """Yielded by the server lifespan and shared by every tool call."""

    settings: Settings
    graph: GraphClient


def get_graph(ctx: Context) -> GraphClient:
    """Extract the shared GraphClient from the request context."""
    return ctx.request_context.lifespan_context.graph
