"""
Security tools: directory audit log search, Defender alerts and
Conditional Access policies.
"""

from typing import Any, Dict, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult

from ..context import get_graph
from ..errors import handle_tool_errors
from . import ToolSpec, annotations, format_json, json_result, odata_params, require, text_result, unknown_action

ALERTS = "/security/alerts_v2"
CA_POLICIES = "/identity/conditionalAccess/policies"

DEFAULT_CA_CONDITIONS = {
    "users": {"includeUsers": ["All"]},
    "applications": {"includeApplications": ["All"]},
}
DEFAULT_CA_GRANT_CONTROLS = {"operator": "OR", "builtInControls": ["mfa"]}


@handle_tool_errors
async def search_audit_log(
    filter: Optional[str] = None,
    top: Optional[int] = None,
    fetch_all: bool = False,
    ctx: Context = None,
) -> CallToolResult:
    """Search Azure AD directory audit events.

    Example filter: "activityDateTime ge 2024-01-01T00:00:00Z and category eq 'GroupManagement'"
    """
    graph = get_graph(ctx)
    params = odata_params(filter=filter, top=top)
    if fetch_all:
        return json_result(await graph.get_all("/auditLogs/directoryAudits", params=params))
    return json_result(await graph.get("/auditLogs/directoryAudits", params=params))


@handle_tool_errors
async def manage_alerts(
    action: Literal["list_alerts", "get_alert", "update_alert"],
    alert_id: Optional[str] = None,
    filter: Optional[str] = None,
    top: Optional[int] = None,
    status: Optional[Literal["new", "inProgress", "resolved"]] = None,
    classification: Optional[str] = None,
    comment: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """List, inspect or triage Microsoft Defender security alerts."""
    graph = get_graph(ctx)

    match action:
        case "list_alerts":
            return json_result(await graph.get(ALERTS, params=odata_params(filter=filter, top=top)))
        case "get_alert":
            require(action, alert_id=alert_id)
            return json_result(await graph.get(f"{ALERTS}/{alert_id}"))
        case "update_alert":
            require(action, alert_id=alert_id)
            patch = {}
            if status:
                patch["status"] = status
            if classification:
                patch["classification"] = classification
            require(action, changes=patch)
            result = await graph.patch(f"{ALERTS}/{alert_id}", patch)
            if comment:
                await graph.post(f"{ALERTS}/{alert_id}/comments", {"comment": comment})
            return json_result(result)
        case _:
            raise unknown_action(action)


@handle_tool_errors
async def manage_conditional_access_policies(
    action: Literal["list", "get", "create", "update", "delete", "enable", "disable"],
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    state: Optional[Literal["enabled", "disabled", "enabledForReportingButNotEnforced"]] = None,
    conditions: Optional[Dict[str, Any]] = None,
    grant_controls: Optional[Dict[str, Any]] = None,
    session_controls: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Conditional Access policies.

    New policies default to disabled, all users, all applications, requiring MFA.
    """
    graph = get_graph(ctx)

    match action:
        case "list":
            result = await graph.get(CA_POLICIES)
        case "get":
            require(action, policy_id=policy_id)
            result = await graph.get(f"{CA_POLICIES}/{policy_id}")
        case "create":
            require(action, display_name=display_name)
            payload = {
                "displayName": display_name,
                "description": description or "",
                "state": state or "disabled",
                "conditions": conditions or DEFAULT_CA_CONDITIONS,
                "grantControls": grant_controls or DEFAULT_CA_GRANT_CONTROLS,
            }
            if session_controls:
                payload["sessionControls"] = session_controls
            result = await graph.post(CA_POLICIES, payload)
        case "update":
            require(action, policy_id=policy_id)
            payload = {
                key: value
                for key, value in (
                    ("displayName", display_name),
                    ("description", description),
                    ("state", state),
                    ("conditions", conditions),
                    ("grantControls", grant_controls),
                    ("sessionControls", session_controls),
                )
                if value
            }
            require(action, changes=payload)
            result = await graph.patch(f"{CA_POLICIES}/{policy_id}", payload)
        case "delete":
            require(action, policy_id=policy_id)
            await graph.delete(f"{CA_POLICIES}/{policy_id}")
            result = {"message": f"Conditional Access policy {policy_id} deleted successfully"}
        case "enable" | "disable":
            require(action, policy_id=policy_id)
            result = await graph.patch(f"{CA_POLICIES}/{policy_id}", {"state": f"{action}d"})
        case _:
            raise unknown_action(action)

    return text_result(f"Conditional Access Policy {action} operation completed:\n\n{format_json(result)}")


TOOLS = [
    ToolSpec(
        search_audit_log,
        "search_audit_log",
        "Search Audit Log",
        "Search Azure AD directory audit events with OData filters.",
        annotations("Search Audit Log", read_only=True),
    ),
    ToolSpec(
        manage_alerts,
        "manage_alerts",
        "Manage Security Alerts",
        "List, inspect and update Microsoft Defender security alerts (alerts_v2).",
        annotations("Manage Security Alerts"),
    ),
    ToolSpec(
        manage_conditional_access_policies,
        "manage_conditional_access_policies",
        "Manage Conditional Access Policies",
        "Create, update, enable, disable and delete Azure AD Conditional Access policies.",
        annotations("Manage Conditional Access Policies", destructive=True),
    ),
]
