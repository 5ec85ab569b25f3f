"""
Data loss prevention: DLP policies (beta endpoint), DLP incidents surfaced as
Defender alerts, and sensitivity labels.
"""

from typing import Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult
from pydantic import BaseModel

from ..context import get_graph
from ..errors import handle_tool_errors
from . import ToolSpec, annotations, json_result, require, unknown_action

DLP_POLICIES = "/security/dataLossPreventionPolicies"
ALERTS = "/security/alerts_v2"
LABELS = "/informationProtection/policy/labels"


class DLPPolicySettings(BaseModel):
    enabled: bool = False


class DateRange(BaseModel):
    start_date: str
    end_date: str


class LabelSettings(BaseModel):
    color: Optional[str] = None
    sensitivity: Optional[int] = None


@handle_tool_errors
async def manage_dlp_policies(
    action: Literal["list", "get", "create", "update", "delete", "test"],
    policy_id: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    settings: Optional[DLPPolicySettings] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage DLP policies. These live on the Graph beta endpoint."""
    graph = get_graph(ctx)
    settings = settings or DLPPolicySettings()
    status = "enabled" if settings.enabled else "disabled"

    match action:
        case "list":
            result = await graph.get(DLP_POLICIES, version="beta")
        case "get":
            require(action, policy_id=policy_id)
            result = await graph.get(f"{DLP_POLICIES}/{policy_id}", version="beta")
        case "create":
            require(action, name=name)
            payload = {"displayName": name, "description": description or "", "status": status}
            result = await graph.post(DLP_POLICIES, payload, version="beta")
        case "update":
            require(action, policy_id=policy_id)
            payload = {"status": status}
            if name:
                payload["displayName"] = name
            if description:
                payload["description"] = description
            result = await graph.patch(f"{DLP_POLICIES}/{policy_id}", payload, version="beta")
        case "delete":
            require(action, policy_id=policy_id)
            await graph.delete(f"{DLP_POLICIES}/{policy_id}", version="beta")
            result = {"message": "DLP policy deleted successfully"}
        case "test":
            require(action, policy_id=policy_id)
            policy = await graph.get(f"{DLP_POLICIES}/{policy_id}", version="beta")
            result = {
                "message": "DLP policy test initiated",
                "policyId": policy_id,
                "status": policy.get("status"),
            }
        case _:
            raise unknown_action(action)

    return json_result(result)


@handle_tool_errors
async def manage_dlp_incidents(
    action: Literal["list", "get", "resolve", "escalate"],
    incident_id: Optional[str] = None,
    date_range: Optional[DateRange] = None,
    severity: Optional[Literal["low", "medium", "high", "informational"]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """List and triage DLP incidents, which Graph exposes as security alerts."""
    graph = get_graph(ctx)

    match action:
        case "list":
            conditions = []
            if date_range:
                conditions.append(
                    f"createdDateTime ge {date_range.start_date} and createdDateTime le {date_range.end_date}"
                )
            if severity:
                conditions.append(f"severity eq '{severity}'")
            params = {"$filter": " and ".join(conditions)} if conditions else None
            result = await graph.get(ALERTS, params=params)
        case "get":
            require(action, incident_id=incident_id)
            result = await graph.get(f"{ALERTS}/{incident_id}")
        case "resolve":
            require(action, incident_id=incident_id)
            result = await graph.patch(
                f"{ALERTS}/{incident_id}",
                {"status": "resolved", "classification": "truePositive"},
            )
        case "escalate":
            require(action, incident_id=incident_id)
            result = await graph.patch(
                f"{ALERTS}/{incident_id}",
                {"severity": "high", "classification": "truePositive"},
            )
        case _:
            raise unknown_action(action)

    return json_result(result)


@handle_tool_errors
async def manage_sensitivity_labels(
    action: Literal["list", "get", "create", "update", "delete"],
    label_id: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    settings: Optional[LabelSettings] = None,
    ctx: Context = None,
) -> CallToolResult:
    graph = get_graph(ctx)
    settings = settings or LabelSettings()

    match action:
        case "list":
            result = await graph.get(LABELS)
        case "get":
            require(action, label_id=label_id)
            result = await graph.get(f"{LABELS}/{label_id}")
        case "create":
            require(action, name=name)
            result = await graph.post(
                LABELS,
                {
                    "name": name,
                    "description": description or "",
                    "color": settings.color or "blue",
                    "sensitivity": settings.sensitivity or 0,
                    "tooltip": description or name,
                    "isActive": True,
                },
            )
        case "update":
            require(action, label_id=label_id)
            payload = {
                key: value
                for key, value in (
                    ("name", name),
                    ("description", description),
                    ("color", settings.color),
                    ("sensitivity", settings.sensitivity),
                )
                if value is not None
            }
            require(action, changes=payload)
            result = await graph.patch(f"{LABELS}/{label_id}", payload)
        case "delete":
            require(action, label_id=label_id)
            await graph.delete(f"{LABELS}/{label_id}")
            result = {"message": "Sensitivity label deleted successfully"}
        case _:
            raise unknown_action(action)

    return json_result(result)


TOOLS = [
    ToolSpec(
        manage_dlp_policies,
        "manage_dlp_policies",
        "Manage DLP Policies",
        "Manage Microsoft Purview data loss prevention policies (Graph beta).",
        annotations("Manage DLP Policies", destructive=True),
    ),
    ToolSpec(
        manage_dlp_incidents,
        "manage_dlp_incidents",
        "Manage DLP Incidents",
        "List, inspect, resolve and escalate DLP incidents raised as security alerts.",
        annotations("Manage DLP Incidents"),
    ),
    ToolSpec(
        manage_sensitivity_labels,
        "manage_sensitivity_labels",
        "Manage Sensitivity Labels",
        "Manage information protection sensitivity labels.",
        annotations("Manage Sensitivity Labels", destructive=True),
    ),
]
