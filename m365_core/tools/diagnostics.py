from typing import Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult

from ..auth import AZURE_SCOPE, GRAPH_SCOPE
from ..context import get_graph
from ..errors import M365Error, handle_tool_errors
from ..graph import odata_quote
from . import ToolSpec, annotations, text_result


@handle_tool_errors
async def test_connectivity(
    test_type: Literal["auth", "graph", "azure", "user", "group", "all"] = "all",
    user_email: Optional[str] = None,
    group_email: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Unified tool to test authentication, connectivity, and API access."""
    graph = get_graph(ctx)
    results = []

    if test_type in ("auth", "all"):
        try:
            await graph.tokens.get_access_token(GRAPH_SCOPE)
            results.append("✅ Authentication: Successfully obtained access token")
        except M365Error as e:
            results.append(f"❌ Authentication: Failed - {e}")

    if test_type in ("graph", "all"):
        try:
            await graph.get("/organization", params={"$select": "id,displayName"}, max_retries=0)
            results.append("✅ API Access: Successfully accessed Microsoft Graph API")
        except M365Error as e:
            results.append(f"❌ API Access: Failed to access Microsoft Graph API - {e}")

    if test_type == "azure":
        try:
            await graph.tokens.get_access_token(AZURE_SCOPE)
            results.append("✅ Azure Resource Manager: Successfully obtained access token")
        except M365Error as e:
            results.append(f"❌ Azure Resource Manager: Failed - {e}")

    if test_type in ("user", "all") and user_email:
        try:
            await graph.get(f"/users/{user_email}", params={"$select": "id"}, max_retries=0)
            results.append(f"✅ User Access: Successfully accessed user '{user_email}'")
        except M365Error as e:
            results.append(f"❌ User Access: Failed to access user '{user_email}' - {e}")

    if test_type in ("group", "all") and group_email:
        try:
            response = await graph.get("/groups", params={"$filter": f"mail eq {odata_quote(group_email)}"}, max_retries=0)
            if response.get("value"):
                group_types = response["value"][0].get("groupTypes", [])
                results.append(
                    f"✅ Group Access: Successfully accessed group '{group_email}' "
                    f"(Type: {', '.join(group_types) or 'Security/Distribution'})"
                )
            else:
                results.append(f"❌ Group Access: Group '{group_email}' not found")
        except M365Error as e:
            results.append(f"❌ Group Access: Failed to access group '{group_email}' - {e}")

    if not results:
        results.append("ℹ️  No tests were performed. Specify test_type and provide group_email/user_email as needed.")

    return text_result("\n".join(results))


TOOLS = [
    ToolSpec(
        test_connectivity,
        "test_connectivity",
        "Test Connectivity",
        "Test authentication and Microsoft Graph / Azure Resource Manager access with the configured app registration.",
        annotations("Test Connectivity", read_only=True),
    ),
]
