"""
Microsoft 365 policy management: retention, information protection, Defender
for Office 365, Teams, Exchange Online, SharePoint governance and security
alert policies.

Every tool follows the same list/get/create/update/delete shape against one
policy collection; the policy_type argument picks the collection where a tool
covers several.
"""

from typing import Any, Dict, List, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult
from pydantic import BaseModel

from ..context import get_graph
from ..errors import InvalidParamsError, handle_tool_errors
from ..graph import GraphClient
from . import ToolSpec, annotations, json_result, require, unknown_action

PolicyAction = Literal["list", "get", "create", "update", "delete"]

RETENTION_POLICIES = "/security/informationProtection/retentionPolicies"
LABEL_POLICIES = "/security/informationProtection/labelPolicies"
ALERT_POLICIES = "/security/alerts/policies"

DEFENDER_ENDPOINTS = {
    "safeAttachments": "/security/attackSimulation/safeAttachmentPolicies",
    "safeLinks": "/security/attackSimulation/safeLinksPolicies",
    "antiPhishing": "/security/antiPhishingPolicies",
    "antiMalware": "/security/antiMalwarePolicies",
    "antiSpam": "/security/antiSpamPolicies",
}

TEAMS_ENDPOINTS = {
    "messaging": "/admin/serviceAnnouncement/policies/messaging",
    "meeting": "/admin/serviceAnnouncement/policies/meeting",
    "calling": "/admin/serviceAnnouncement/policies/calling",
    "appSetup": "/admin/serviceAnnouncement/policies/appSetup",
    "updateManagement": "/admin/serviceAnnouncement/policies/updateManagement",
}

EXCHANGE_ENDPOINTS = {
    "addressBook": "/admin/exchange/addressBookPolicies",
    "outlookWebApp": "/admin/exchange/owaMailboxPolicies",
    "activeSyncMailbox": "/admin/exchange/activeSyncMailboxPolicies",
    "retentionPolicy": "/admin/exchange/retentionPolicies",
    "dlpPolicy": "/admin/exchange/dataLossPreventionPolicies",
}

SHAREPOINT_ENDPOINTS = {
    "sharingPolicy": "/admin/sharepoint/settings/sharing",
    "accessPolicy": "/admin/sharepoint/settings/conditionalAccess",
    "informationBarrier": "/admin/sharepoint/settings/informationBarriers",
    "retentionLabel": "/admin/sharepoint/settings/retentionLabels",
}


class RetentionSettings(BaseModel):
    retention_duration: int
    retention_action: Literal["Delete", "Keep", "KeepAndDelete"]
    deletion_type: Optional[Literal["Immediately", "AfterRetentionPeriod"]] = None


class RetentionLocations(BaseModel):
    share_point_sites: Optional[List[str]] = None
    exchange_email: Optional[bool] = None
    teams_channels: Optional[bool] = None
    teams_chats: Optional[bool] = None
    one_drive_accounts: Optional[List[str]] = None


class PolicyTargets(BaseModel):
    users: List[str] = []
    groups: List[str] = []


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def graph_fields(model: BaseModel) -> Dict[str, Any]:
    """Model fields set by the caller, keyed the way Graph spells them."""
    return {_camel(k): v for k, v in model.model_dump(exclude_none=True).items()}


def _endpoint(endpoints: Dict[str, str], policy_type: str) -> str:
    if policy_type not in endpoints:
        raise InvalidParamsError(f"Unsupported policy type: {policy_type}")
    return endpoints[policy_type]


def _changes(**fields: Any) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None and v != ""}


async def policy_crud(
    graph: GraphClient,
    action: str,
    collection: str,
    policy_id: Optional[str],
    create: Optional[Dict[str, Any]] = None,
    update: Optional[Dict[str, Any]] = None,
    label: str = "Policy",
) -> Any:
    """Run one of list/get/create/update/delete against a policy collection.

    `create` must already carry displayName when the action is create; the
    caller checks the fields it needs before anything is sent.
    """
    match action:
        case "list":
            return await graph.get(collection)
        case "get":
            require(action, policy_id=policy_id)
            return await graph.get(f"{collection}/{policy_id}")
        case "create":
            return await graph.post(collection, create)
        case "update":
            require(action, policy_id=policy_id, changes=update)
            return await graph.patch(f"{collection}/{policy_id}", update)
        case "delete":
            require(action, policy_id=policy_id)
            await graph.delete(f"{collection}/{policy_id}")
            return {"message": f"{label} {policy_id} deleted successfully"}
        case _:
            raise unknown_action(action)


@handle_tool_errors
async def manage_retention_policies(
    action: PolicyAction,
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    is_enabled: Optional[bool] = None,
    retention_settings: Optional[RetentionSettings] = None,
    locations: Optional[RetentionLocations] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage retention policies across Exchange, SharePoint, OneDrive and Teams."""
    graph = get_graph(ctx)
    create = update = None
    if action == "create":
        require(action, display_name=display_name, retention_settings=retention_settings)
        create = {
            "displayName": display_name,
            "description": description or "",
            "isEnabled": True if is_enabled is None else is_enabled,
            "retentionSettings": graph_fields(retention_settings),
            "locations": graph_fields(locations) if locations else {},
        }
    elif action == "update":
        update = _changes(
            displayName=display_name,
            description=description,
            isEnabled=is_enabled,
            retentionSettings=graph_fields(retention_settings) if retention_settings else None,
            locations=graph_fields(locations) if locations else None,
        )
    result = await policy_crud(graph, action, RETENTION_POLICIES, policy_id, create, update, "Retention policy")
    return json_result(result)


@handle_tool_errors
async def manage_information_protection_policies(
    action: PolicyAction,
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage information protection (label) policies."""
    graph = get_graph(ctx)
    create = update = None
    if action == "create":
        require(action, display_name=display_name)
        create = {"displayName": display_name, "description": description or "", "settings": settings or {}}
    elif action == "update":
        update = _changes(displayName=display_name, description=description, settings=settings)
    result = await policy_crud(
        graph, action, LABEL_POLICIES, policy_id, create, update, "Information protection policy"
    )
    return json_result(result)


@handle_tool_errors
async def manage_defender_policies(
    action: PolicyAction,
    policy_type: Literal["safeAttachments", "safeLinks", "antiPhishing", "antiMalware", "antiSpam"],
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    is_enabled: Optional[bool] = None,
    settings: Optional[Dict[str, Any]] = None,
    applied_to: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Defender for Office 365 policies: Safe Attachments, Safe Links, anti-phishing, anti-malware and anti-spam."""
    graph = get_graph(ctx)
    collection = _endpoint(DEFENDER_ENDPOINTS, policy_type)
    create = update = None
    if action == "create":
        require(action, display_name=display_name)
        create = {
            "displayName": display_name,
            "description": description or "",
            "isEnabled": True if is_enabled is None else is_enabled,
            "settings": settings or {},
            "appliedTo": applied_to or {},
        }
    elif action == "update":
        update = _changes(
            displayName=display_name,
            description=description,
            isEnabled=is_enabled,
            settings=settings,
            appliedTo=applied_to,
        )
    result = await policy_crud(graph, action, collection, policy_id, create, update, f"{policy_type} policy")
    return json_result(result)


@handle_tool_errors
async def manage_teams_policies(
    action: Literal["list", "get", "create", "update", "delete", "assign"],
    policy_type: Literal["messaging", "meeting", "calling", "appSetup", "updateManagement"],
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
    assign_to: Optional[PolicyTargets] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Teams messaging, meeting, calling, app setup and update policies.

    assign targets users and groups by object ID.
    """
    graph = get_graph(ctx)
    collection = _endpoint(TEAMS_ENDPOINTS, policy_type)

    if action == "assign":
        require(action, policy_id=policy_id, assign_to=assign_to)
        assignments = [
            {"target": {"@odata.type": "#microsoft.graph.userTarget", "userId": user_id}}
            for user_id in assign_to.users
        ] + [
            {"target": {"@odata.type": "#microsoft.graph.groupTarget", "groupId": group_id}}
            for group_id in assign_to.groups
        ]
        require(action, assignments=assignments)
        result = await graph.post(f"{collection}/{policy_id}/assign", {"assignments": assignments})
        return json_result(result)

    create = update = None
    if action == "create":
        require(action, display_name=display_name)
        create = {"displayName": display_name, "description": description or "", "settings": settings or {}}
    elif action == "update":
        update = _changes(displayName=display_name, description=description, settings=settings)
    result = await policy_crud(graph, action, collection, policy_id, create, update, f"Teams {policy_type} policy")
    return json_result(result)


@handle_tool_errors
async def manage_exchange_policies(
    action: PolicyAction,
    policy_type: Literal["addressBook", "outlookWebApp", "activeSyncMailbox", "retentionPolicy", "dlpPolicy"],
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    is_default: Optional[bool] = None,
    settings: Optional[Dict[str, Any]] = None,
    applied_to: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Exchange Online address book, OWA, ActiveSync, retention and DLP policies."""
    graph = get_graph(ctx)
    collection = _endpoint(EXCHANGE_ENDPOINTS, policy_type)
    create = update = None
    if action == "create":
        require(action, display_name=display_name)
        create = {
            "displayName": display_name,
            "description": description or "",
            "isDefault": bool(is_default),
            "settings": settings or {},
            "appliedTo": applied_to or {},
        }
    elif action == "update":
        update = _changes(
            displayName=display_name,
            description=description,
            isDefault=is_default,
            settings=settings,
            appliedTo=applied_to,
        )
    result = await policy_crud(
        graph, action, collection, policy_id, create, update, f"Exchange {policy_type} policy"
    )
    return json_result(result)


@handle_tool_errors
async def manage_sharepoint_governance_policies(
    action: PolicyAction,
    policy_type: Literal["sharingPolicy", "accessPolicy", "informationBarrier", "retentionLabel"],
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    scope: Optional[Dict[str, Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage SharePoint sharing, access, information barrier and retention label policies."""
    graph = get_graph(ctx)
    collection = _endpoint(SHAREPOINT_ENDPOINTS, policy_type)
    create = update = None
    if action == "create":
        require(action, display_name=display_name)
        create = {
            "displayName": display_name,
            "description": description or "",
            "scope": scope or {},
            "settings": settings or {},
        }
    elif action == "update":
        update = _changes(displayName=display_name, description=description, scope=scope, settings=settings)
    result = await policy_crud(
        graph, action, collection, policy_id, create, update, f"SharePoint {policy_type} policy"
    )
    return json_result(result)


@handle_tool_errors
async def manage_security_alert_policies(
    action: Literal["list", "get", "create", "update", "delete", "enable", "disable"],
    policy_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    category: Optional[
        Literal["DataLossPrevention", "ThreatManagement", "DataGovernance", "AccessGovernance", "Others"]
    ] = None,
    severity: Optional[Literal["Low", "Medium", "High", "Informational"]] = None,
    is_enabled: Optional[bool] = None,
    conditions: Optional[Dict[str, Any]] = None,
    actions: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage alert policies that watch for threats, suspicious activity and compliance violations.

    New policies default to category Others, severity Medium, enabled.
    """
    graph = get_graph(ctx)

    if action in ("enable", "disable"):
        require(action, policy_id=policy_id)
        result = await graph.patch(f"{ALERT_POLICIES}/{policy_id}", {"isEnabled": action == "enable"})
        return json_result(result)

    create = update = None
    if action == "create":
        require(action, display_name=display_name)
        create = {
            "displayName": display_name,
            "description": description or "",
            "category": category or "Others",
            "severity": severity or "Medium",
            "isEnabled": True if is_enabled is None else is_enabled,
            "conditions": conditions or {},
            "actions": actions or {},
        }
    elif action == "update":
        update = _changes(
            displayName=display_name,
            description=description,
            category=category,
            severity=severity,
            isEnabled=is_enabled,
            conditions=conditions,
            actions=actions,
        )
    result = await policy_crud(graph, action, ALERT_POLICIES, policy_id, create, update, "Security alert policy")
    return json_result(result)


TOOLS = [
    ToolSpec(
        manage_retention_policies,
        "manage_retention_policies",
        "Manage Retention Policies",
        "Manage retention policies for content across Exchange, SharePoint, OneDrive and Teams.",
        annotations("Manage Retention Policies", destructive=True),
    ),
    ToolSpec(
        manage_information_protection_policies,
        "manage_information_protection_policies",
        "Manage Information Protection Policies",
        "Manage information protection policies for classification, encryption and rights management.",
        annotations("Manage Information Protection Policies", destructive=True),
    ),
    ToolSpec(
        manage_defender_policies,
        "manage_defender_policies",
        "Manage Defender Policies",
        "Manage Defender for Office 365 policies: Safe Attachments, Safe Links, anti-phishing, anti-malware and anti-spam.",
        annotations("Manage Defender Policies", destructive=True),
    ),
    ToolSpec(
        manage_teams_policies,
        "manage_teams_policies",
        "Manage Teams Policies",
        "Manage Microsoft Teams messaging, meeting, calling, app setup and update policies and their assignments.",
        annotations("Manage Teams Policies", destructive=True),
    ),
    ToolSpec(
        manage_exchange_policies,
        "manage_exchange_policies",
        "Manage Exchange Policies",
        "Manage Exchange Online address book, Outlook on the web, ActiveSync, retention and DLP policies.",
        annotations("Manage Exchange Policies", destructive=True),
    ),
    ToolSpec(
        manage_sharepoint_governance_policies,
        "manage_sharepoint_governance_policies",
        "Manage SharePoint Governance Policies",
        "Manage SharePoint sharing controls, access restrictions, information barriers and retention labels.",
        annotations("Manage SharePoint Governance Policies", destructive=True),
    ),
    ToolSpec(
        manage_security_alert_policies,
        "manage_security_alert_policies",
        "Manage Security Alert Policies",
        "Manage alert policies that monitor threats, suspicious activity and compliance violations.",
        annotations("Manage Security Alert Policies", destructive=True),
    ),
]
