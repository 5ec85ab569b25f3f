"""
Azure AD (Entra ID) tools: directory roles, app registrations, devices and
service principals.
"""

from typing import Any, Dict, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult

from ..context import get_graph
from ..errors import handle_tool_errors
from ..graph import GRAPH_BASE_URL
from . import ToolSpec, annotations, json_result, odata_params, require, unknown_action

ROLE_ASSIGNMENTS = "/roleManagement/directory/roleAssignments"


def _owner_ref(owner_id: str) -> Dict[str, str]:
    return {"@odata.id": f"{GRAPH_BASE_URL}/users/{owner_id}"}


@handle_tool_errors
async def manage_azure_ad_roles(
    action: Literal["list_roles", "list_role_assignments", "assign_role", "remove_role_assignment"],
    role_id: Optional[str] = None,
    principal_id: Optional[str] = None,
    assignment_id: Optional[str] = None,
    filter: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Azure AD directory roles and role assignments.

    Assignments are made at tenant scope (directoryScopeId "/").
    """
    graph = get_graph(ctx)

    match action:
        case "list_roles":
            result = await graph.get("/directoryRoles", params=odata_params(filter=filter))
        case "list_role_assignments":
            result = await graph.get(ROLE_ASSIGNMENTS, params=odata_params(filter=filter))
        case "assign_role":
            require(action, role_id=role_id, principal_id=principal_id)
            result = await graph.post(
                ROLE_ASSIGNMENTS,
                {
                    "@odata.type": "#microsoft.graph.unifiedRoleAssignment",
                    "roleDefinitionId": role_id,
                    "principalId": principal_id,
                    "directoryScopeId": "/",
                },
            )
        case "remove_role_assignment":
            require(action, assignment_id=assignment_id)
            await graph.delete(f"{ROLE_ASSIGNMENTS}/{assignment_id}")
            result = {"message": "Role assignment removed successfully"}
        case _:
            raise unknown_action(action)

    return json_result(result)


@handle_tool_errors
async def manage_azure_ad_apps(
    action: Literal["list_apps", "get_app", "update_app", "add_owner", "remove_owner"],
    app_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    app_details: Optional[Dict[str, Any]] = None,
    filter: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Azure AD application registrations. app_id is the application object ID."""
    graph = get_graph(ctx)

    match action:
        case "list_apps":
            result = await graph.get("/applications", params=odata_params(filter=filter))
        case "get_app":
            require(action, app_id=app_id)
            result = await graph.get(f"/applications/{app_id}")
        case "update_app":
            require(action, app_id=app_id, app_details=app_details)
            await graph.patch(f"/applications/{app_id}", app_details)
            result = {"message": "Application updated successfully"}
        case "add_owner":
            require(action, app_id=app_id, owner_id=owner_id)
            await graph.post(f"/applications/{app_id}/owners/$ref", _owner_ref(owner_id))
            result = {"message": "Owner added successfully"}
        case "remove_owner":
            require(action, app_id=app_id, owner_id=owner_id)
            await graph.delete(f"/applications/{app_id}/owners/{owner_id}/$ref")
            result = {"message": "Owner removed successfully"}
        case _:
            raise unknown_action(action)

    return json_result(result)


@handle_tool_errors
async def manage_azure_ad_devices(
    action: Literal["list_devices", "get_device", "enable_device", "disable_device", "delete_device"],
    device_id: Optional[str] = None,
    filter: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Azure AD registered devices."""
    graph = get_graph(ctx)

    match action:
        case "list_devices":
            result = await graph.get("/devices", params=odata_params(filter=filter))
        case "get_device":
            require(action, device_id=device_id)
            result = await graph.get(f"/devices/{device_id}")
        case "enable_device" | "disable_device":
            require(action, device_id=device_id)
            enabled = action == "enable_device"
            await graph.patch(f"/devices/{device_id}", {"accountEnabled": enabled})
            result = {"message": f"Device {'enabled' if enabled else 'disabled'} successfully"}
        case "delete_device":
            require(action, device_id=device_id)
            await graph.delete(f"/devices/{device_id}")
            result = {"message": "Device deleted successfully"}
        case _:
            raise unknown_action(action)

    return json_result(result)


@handle_tool_errors
async def manage_service_principals(
    action: Literal["list_sps", "get_sp", "add_owner", "remove_owner"],
    sp_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    filter: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage service principals (enterprise applications)."""
    graph = get_graph(ctx)

    match action:
        case "list_sps":
            result = await graph.get("/servicePrincipals", params=odata_params(filter=filter))
        case "get_sp":
            require(action, sp_id=sp_id)
            result = await graph.get(f"/servicePrincipals/{sp_id}")
        case "add_owner":
            require(action, sp_id=sp_id, owner_id=owner_id)
            await graph.post(f"/servicePrincipals/{sp_id}/owners/$ref", _owner_ref(owner_id))
            result = {"message": "Owner added successfully to Service Principal"}
        case "remove_owner":
            require(action, sp_id=sp_id, owner_id=owner_id)
            await graph.delete(f"/servicePrincipals/{sp_id}/owners/{owner_id}/$ref")
            result = {"message": "Owner removed successfully from Service Principal"}
        case _:
            raise unknown_action(action)

    return json_result(result)


TOOLS = [
    ToolSpec(
        manage_azure_ad_roles,
        "manage_azure_ad_roles",
        "Manage Azure AD Roles",
        "List directory roles and role assignments, assign roles to principals and remove assignments.",
        annotations("Manage Azure AD Roles", destructive=True),
    ),
    ToolSpec(
        manage_azure_ad_apps,
        "manage_azure_ad_apps",
        "Manage Azure AD Applications",
        "List, inspect and update app registrations and manage their owners.",
        annotations("Manage Azure AD Applications", destructive=True),
    ),
    ToolSpec(
        manage_azure_ad_devices,
        "manage_azure_ad_devices",
        "Manage Azure AD Devices",
        "List, inspect, enable, disable or delete devices registered in Azure AD.",
        annotations("Manage Azure AD Devices", destructive=True),
    ),
    ToolSpec(
        manage_service_principals,
        "manage_service_principals",
        "Manage Service Principals",
        "List and inspect service principals and manage their owners.",
        annotations("Manage Service Principals", destructive=True),
    ),
]
