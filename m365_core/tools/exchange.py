from typing import Any, Dict, List, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult
from pydantic import BaseModel

from ..context import get_graph
from ..errors import handle_tool_errors
from . import ToolSpec, annotations, json_result, require, text_result, unknown_action


class ExchangeSettings(BaseModel):
    """Payload for update; only the part matching setting_type is used."""

    mailbox: Optional[Dict[str, Any]] = None
    rules: Optional[List[Dict[str, Any]]] = None
    sharing_policy: Optional[Dict[str, Any]] = None
    retention_tags: Optional[List[Dict[str, Any]]] = None


@handle_tool_errors
async def manage_exchange_settings(
    action: Literal["get", "update"],
    setting_type: Literal["mailbox", "transport", "organization", "retention"],
    target: Optional[str] = None,
    settings: Optional[ExchangeSettings] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Read or change Exchange Online settings.

    mailbox settings are per user (target is the UPN); transport rules,
    organization sharing policy and retention tags are tenant-wide.
    """
    graph = get_graph(ctx)
    settings = settings or ExchangeSettings()

    match (setting_type, action):
        case ("mailbox", "get"):
            require(action, target=target)
            return json_result(await graph.get(f"/users/{target}/mailboxSettings"))
        case ("mailbox", "update"):
            require(action, target=target, mailbox=settings.mailbox)
            await graph.patch(f"/users/{target}/mailboxSettings", settings.mailbox)
            return text_result("Mailbox settings updated successfully")

        case ("transport", "get"):
            return json_result(await graph.get("/admin/transportRules"))
        case ("transport", "update"):
            require(action, rules=settings.rules)
            for rule in settings.rules:
                await graph.post("/admin/transportRules", rule)
            return text_result(f"Transport rules updated successfully ({len(settings.rules)} rule(s))")

        case ("organization", "get"):
            return json_result(await graph.get("/admin/organization/settings"))
        case ("organization", "update"):
            require(action, sharing_policy=settings.sharing_policy)
            await graph.patch("/admin/organization/settings", settings.sharing_policy)
            return text_result("Organization settings updated successfully")

        case ("retention", "get"):
            return json_result(await graph.get("/admin/retentionTags"))
        case ("retention", "update"):
            require(action, retention_tags=settings.retention_tags)
            for tag in settings.retention_tags:
                await graph.post("/admin/retentionTags", tag)
            return text_result(f"Retention tags updated successfully ({len(settings.retention_tags)} tag(s))")

        case _:
            raise unknown_action(f"{action} {setting_type}")


TOOLS = [
    ToolSpec(
        manage_exchange_settings,
        "manage_exchange_settings",
        "Manage Exchange Settings",
        "Manage Exchange Online settings including mailbox configuration, transport rules, and organization policies.",
        annotations("Manage Exchange Settings", idempotent=True),
    ),
]
