"""
Directory tools: distribution lists, security groups, Microsoft 365 groups,
user settings and offboarding.
"""

import re
from typing import Any, Dict, List, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult
from pydantic import BaseModel

from ..context import get_graph
from ..errors import UpstreamError, handle_tool_errors
from ..graph import GRAPH_BASE_URL, GraphClient, directory_ref, is_guid, odata_quote
from ..logging_setup import get_logger
from . import ToolSpec, annotations, json_result, odata_params, require, text_result, unknown_action

logger = get_logger(__name__)

GroupAction = Literal["get", "create", "update", "delete", "add_members", "remove_members"]


class DistributionListSettings(BaseModel):
    hide_from_gal: Optional[bool] = None
    require_sender_authentication: Optional[bool] = None


class SecurityGroupSettings(BaseModel):
    security_enabled: Optional[bool] = None
    mail_enabled: Optional[bool] = None


class M365GroupSettings(BaseModel):
    visibility: Optional[Literal["Private", "Public"]] = None
    allow_external_senders: Optional[bool] = None
    auto_subscribe_new_members: Optional[bool] = None


class OffboardingOptions(BaseModel):
    revoke_access: bool = True
    backup_data: bool = False
    convert_to_shared: bool = False
    retain_mailbox: bool = True


# Characters Graph rejects in mailNickname.
NICKNAME_FORBIDDEN_RE = re.compile(r'[@()\\\[\]";:<>,]|[^\x00-\x7f]')


def mail_nickname(display_name: str) -> str:
    """'Sales Team' -> 'salesteam', 'Sales+Ops Team' -> 'sales+opsteam'"""
    return NICKNAME_FORBIDDEN_RE.sub("", display_name.lower().replace(" ", ""))


async def resolve_group_id(graph: GraphClient, group: str) -> str:
    """Accept a group object ID or its primary SMTP address."""
    if is_guid(group):
        return group
    response = await graph.get("/groups", params={"$filter": f"mail eq {odata_quote(group)}", "$select": "id"})
    if not response.get("value"):
        raise UpstreamError(f"Group '{group}' not found. Please verify the email address is correct.", status=404)
    return response["value"][0]["id"]


async def _add_members(graph: GraphClient, group_id: str, members: List[str]) -> List[str]:
    added = []
    for member in members:
        user_id = await graph.resolve_user_id(member)
        await graph.post(f"/groups/{group_id}/members/$ref", directory_ref(user_id))
        added.append(member)
    return added


async def _remove_members(graph: GraphClient, group_id: str, members: List[str]) -> List[str]:
    removed = []
    for member in members:
        user_id = await graph.resolve_user_id(member)
        await graph.delete(f"/groups/{group_id}/members/{user_id}/$ref")
        removed.append(member)
    return removed


async def _membership(action: str, graph: GraphClient, group_id: str, members: List[str], label: str) -> CallToolResult:
    group_id = await resolve_group_id(graph, group_id)
    if action == "add_members":
        done = await _add_members(graph, group_id, members)
        logger.info("group_members_added", group_id=group_id, count=len(done))
        return text_result(f"Successfully added {len(done)} member(s) to {label} {group_id}: {', '.join(done)}")
    done = await _remove_members(graph, group_id, members)
    logger.info("group_members_removed", group_id=group_id, count=len(done))
    return text_result(f"Successfully removed {len(done)} member(s) from {label} {group_id}: {', '.join(done)}")


@handle_tool_errors
async def manage_distribution_lists(
    action: GroupAction,
    list_id: Optional[str] = None,
    display_name: Optional[str] = None,
    email_address: Optional[str] = None,
    description: Optional[str] = None,
    members: Optional[List[str]] = None,
    settings: Optional[DistributionListSettings] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage mail-enabled distribution lists.

    list_id accepts either the group object ID or its email address.
    """
    graph = get_graph(ctx)

    match action:
        case "get":
            if list_id:
                group = await graph.get(f"/groups/{await resolve_group_id(graph, list_id)}")
                return json_result(group)
            groups = await graph.get_all(
                "/groups",
                params=odata_params(filter="mailEnabled eq true and securityEnabled eq false"),
            )
            return json_result(groups)

        case "create":
            require(action, display_name=display_name, email_address=email_address)
            group_data = {
                "displayName": display_name,
                "mailNickname": email_address.split("@")[0],
                "mailEnabled": True,
                "groupTypes": ["Unified"],
                "securityEnabled": False,
            }
            if description:
                group_data["description"] = description
            group = await graph.post("/groups", group_data)
            if settings:
                await graph.patch(f"/groups/{group['id']}", _distribution_list_patch(settings))
            if members:
                await _add_members(graph, group["id"], members)
            return json_result(group)

        case "update":
            require(action, list_id=list_id)
            group_id = await resolve_group_id(graph, list_id)
            patch = {}
            if display_name:
                patch["displayName"] = display_name
            if description:
                patch["description"] = description
            if settings:
                patch.update(_distribution_list_patch(settings))
            require(action, changes=patch)
            await graph.patch(f"/groups/{group_id}", patch)
            return text_result(f"Distribution list {list_id} updated successfully")

        case "delete":
            require(action, list_id=list_id)
            await graph.delete(f"/groups/{await resolve_group_id(graph, list_id)}")
            return text_result(f"Distribution list {list_id} deleted successfully")

        case "add_members" | "remove_members":
            require(action, list_id=list_id, members=members)
            return await _membership(action, graph, list_id, members, "distribution list")

        case _:
            raise unknown_action(action)


def _distribution_list_patch(settings: DistributionListSettings) -> Dict[str, Any]:
    patch = {}
    if settings.hide_from_gal is not None:
        patch["hideFromAddressLists"] = settings.hide_from_gal
        patch["hideFromOutlookClients"] = settings.hide_from_gal
    if settings.require_sender_authentication is not None:
        patch["allowExternalSenders"] = not settings.require_sender_authentication
    return patch


@handle_tool_errors
async def manage_security_groups(
    action: GroupAction,
    group_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    members: Optional[List[str]] = None,
    settings: Optional[SecurityGroupSettings] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Azure AD security groups used for access control."""
    graph = get_graph(ctx)

    match action:
        case "get":
            if group_id:
                return json_result(await graph.get(f"/groups/{await resolve_group_id(graph, group_id)}"))
            groups = await graph.get_all("/groups", params=odata_params(filter="securityEnabled eq true"))
            return json_result(groups)

        case "create":
            require(action, display_name=display_name)
            group_data = {
                "displayName": display_name,
                "mailEnabled": bool(settings and settings.mail_enabled),
                "securityEnabled": True,
                "mailNickname": mail_nickname(display_name),
                "groupTypes": [],
            }
            if description:
                group_data["description"] = description
            if members:
                group_data["members@odata.bind"] = [
                    f"{GRAPH_BASE_URL}/directoryObjects/{await graph.resolve_user_id(m)}" for m in members
                ]
            group = await graph.post("/groups", group_data)
            return json_result(group)

        case "update":
            require(action, group_id=group_id)
            patch = {}
            if display_name:
                patch["displayName"] = display_name
            if description:
                patch["description"] = description
            if settings:
                if settings.security_enabled is not None:
                    patch["securityEnabled"] = settings.security_enabled
                if settings.mail_enabled is not None:
                    patch["mailEnabled"] = settings.mail_enabled
            require(action, changes=patch)
            await graph.patch(f"/groups/{await resolve_group_id(graph, group_id)}", patch)
            return text_result(f"Security group {group_id} updated successfully")

        case "delete":
            require(action, group_id=group_id)
            await graph.delete(f"/groups/{await resolve_group_id(graph, group_id)}")
            return text_result(f"Security group {group_id} deleted successfully")

        case "add_members" | "remove_members":
            require(action, group_id=group_id, members=members)
            return await _membership(action, graph, group_id, members, "security group")

        case _:
            raise unknown_action(action)


@handle_tool_errors
async def manage_m365_groups(
    action: GroupAction,
    group_id: Optional[str] = None,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    owners: Optional[List[str]] = None,
    members: Optional[List[str]] = None,
    settings: Optional[M365GroupSettings] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Microsoft 365 (Unified) groups with shared mailbox, calendar and files."""
    graph = get_graph(ctx)

    match action:
        case "get":
            if group_id:
                return json_result(await graph.get(f"/groups/{await resolve_group_id(graph, group_id)}"))
            groups = await graph.get_all("/groups", params=odata_params(filter="groupTypes/any(c:c eq 'Unified')"))
            return json_result(groups)

        case "create":
            require(action, display_name=display_name)
            group_data = {
                "displayName": display_name,
                "description": description or display_name,
                "mailEnabled": True,
                "mailNickname": mail_nickname(display_name),
                "securityEnabled": False,
                "groupTypes": ["Unified"],
                "visibility": (settings.visibility if settings and settings.visibility else "Private"),
            }
            if owners:
                group_data["owners@odata.bind"] = [
                    f"{GRAPH_BASE_URL}/users/{await graph.resolve_user_id(o)}" for o in owners
                ]
            if members:
                group_data["members@odata.bind"] = [
                    f"{GRAPH_BASE_URL}/users/{await graph.resolve_user_id(m)}" for m in members
                ]
            group = await graph.post("/groups", group_data)

            # allowExternalSenders and autoSubscribeNewMembers can only be set after creation.
            extra = _m365_group_patch(settings, include_visibility=False) if settings else {}
            if extra:
                await graph.patch(f"/groups/{group['id']}", extra)
            return json_result(group)

        case "update":
            require(action, group_id=group_id)
            patch = {}
            if display_name:
                patch["displayName"] = display_name
            if description:
                patch["description"] = description
            if settings:
                patch.update(_m365_group_patch(settings))
            require(action, changes=patch)
            await graph.patch(f"/groups/{await resolve_group_id(graph, group_id)}", patch)
            return text_result(f"Microsoft 365 group {group_id} updated successfully")

        case "delete":
            require(action, group_id=group_id)
            await graph.delete(f"/groups/{await resolve_group_id(graph, group_id)}")
            return text_result(f"Microsoft 365 group {group_id} deleted successfully")

        case "add_members" | "remove_members":
            require(action, group_id=group_id, members=members)
            return await _membership(action, graph, group_id, members, "Microsoft 365 group")

        case _:
            raise unknown_action(action)


def _m365_group_patch(settings: M365GroupSettings, include_visibility: bool = True) -> Dict[str, Any]:
    patch = {}
    if include_visibility and settings.visibility:
        patch["visibility"] = settings.visibility
    if settings.allow_external_senders is not None:
        patch["allowExternalSenders"] = settings.allow_external_senders
    if settings.auto_subscribe_new_members is not None:
        patch["autoSubscribeNewMembers"] = settings.auto_subscribe_new_members
    return patch


@handle_tool_errors
async def manage_user_settings(
    action: Literal["get", "update"],
    user_id: str,
    settings: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Get or patch a user's properties (UPN or object ID)."""
    graph = get_graph(ctx)

    match action:
        case "get":
            require(action, user_id=user_id)
            return json_result(await graph.get(f"/users/{user_id}"))
        case "update":
            require(action, user_id=user_id, settings=settings)
            await graph.patch(f"/users/{user_id}", settings)
            return text_result("User settings updated successfully")
        case _:
            raise unknown_action(action)


@handle_tool_errors
async def manage_offboarding(
    action: Literal["start", "check", "complete"],
    user_id: str,
    options: Optional[OffboardingOptions] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Offboard a departing user.

    start disables sign-in and revokes sessions, check reports account state,
    complete either prepares the mailbox for shared conversion or deletes the user.
    """
    graph = get_graph(ctx)
    options = options or OffboardingOptions()
    require(action, user_id=user_id)

    match action:
        case "start":
            steps = []
            await graph.patch(f"/users/{user_id}", {"accountEnabled": False})
            steps.append("✅ Sign-in blocked")
            if options.revoke_access:
                await graph.post(f"/users/{user_id}/revokeSignInSessions", {})
                steps.append("✅ Sign-in sessions revoked")
            if options.backup_data:
                drive = await graph.get(f"/users/{user_id}/drive")
                steps.append(f"✅ OneDrive located for backup: {drive.get('webUrl', 'N/A')}")
            return text_result("Offboarding process started successfully\n\n" + "\n".join(steps))

        case "check":
            status = await graph.get(
                f"/users/{user_id}",
                params={"$select": "id,displayName,userPrincipalName,accountEnabled,assignedLicenses"},
            )
            return json_result(status)

        case "complete":
            if options.convert_to_shared:
                user = await graph.get(f"/users/{user_id}", params={"$select": "id,userPrincipalName,assignedLicenses"})
                sku_ids = [lic["skuId"] for lic in user.get("assignedLicenses", [])]
                if sku_ids:
                    await graph.post(f"/users/{user_id}/assignLicense", {"addLicenses": [], "removeLicenses": sku_ids})
                upn = user.get("userPrincipalName", user_id)
                result_text = "Offboarding process completed successfully\n\n"
                result_text += f"✅ Removed {len(sku_ids)} license(s)\n\n"
                result_text += "⚠️ **Note:** Mailbox type conversion requires Exchange Online PowerShell:\n"
                result_text += f"```powershell\nConnect-ExchangeOnline\nSet-Mailbox -Identity '{upn}' -Type Shared\n```"
                return text_result(result_text)
            if not options.retain_mailbox:
                await graph.delete(f"/users/{user_id}")
                return text_result(f"Offboarding process completed successfully: user {user_id} deleted")
            return text_result("Offboarding process completed successfully (account retained)")

        case _:
            raise unknown_action(action)


TOOLS = [
    ToolSpec(
        manage_distribution_lists,
        "manage_distribution_lists",
        "Manage Distribution Lists",
        "Manage Exchange distribution lists: get, create, update, delete, add_members, remove_members.",
        annotations("Manage Distribution Lists", destructive=True),
    ),
    ToolSpec(
        manage_security_groups,
        "manage_security_groups",
        "Manage Security Groups",
        "Manage Azure AD security groups for access control, including group creation, membership, and security settings.",
        annotations("Manage Security Groups", destructive=True),
    ),
    ToolSpec(
        manage_m365_groups,
        "manage_m365_groups",
        "Manage Microsoft 365 Groups",
        "Manage Microsoft 365 groups for team collaboration with shared resources like mailbox, calendar, and files.",
        annotations("Manage Microsoft 365 Groups", destructive=True),
    ),
    ToolSpec(
        manage_user_settings,
        "manage_user_settings",
        "Manage User Settings",
        "Get or update user properties such as department, job title, usage location or account state.",
        annotations("Manage User Settings", idempotent=True),
    ),
    ToolSpec(
        manage_offboarding,
        "manage_offboarding",
        "Manage User Offboarding",
        "Offboard a user: block sign-in, revoke sessions, remove licenses and optionally delete the account. "
        "⚠️ Shared mailbox conversion itself requires Exchange Online PowerShell.",
        annotations("Manage User Offboarding", destructive=True),
    ),
]
