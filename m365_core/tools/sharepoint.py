"""
SharePoint site and list management.
"""

from typing import Any, Dict, List, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult
from pydantic import BaseModel

from ..context import get_graph
from ..errors import handle_tool_errors
from ..graph import GRAPH_BASE_URL
from . import ToolSpec, annotations, json_result, odata_params, require, text_result, unknown_action


class SiteSettings(BaseModel):
    is_public: Optional[bool] = None
    allow_sharing: Optional[bool] = None
    storage_quota: Optional[int] = None


class ListColumn(BaseModel):
    name: str
    type: str = "text"
    required: bool = False
    default_value: Optional[Any] = None


def _settings_patch(settings: SiteSettings) -> Dict[str, Any]:
    patch = {}
    if settings.is_public is not None:
        patch["isPublic"] = settings.is_public
    if settings.allow_sharing is not None:
        patch["sharingCapability"] = "ExternalUserSharingOnly" if settings.allow_sharing else "Disabled"
    if settings.storage_quota is not None:
        patch["storageQuota"] = settings.storage_quota
    return patch


def _user_ref(user: str) -> Dict[str, str]:
    return {"@odata.id": f"{GRAPH_BASE_URL}/users/{user}"}


@handle_tool_errors
async def manage_sharepoint_sites(
    action: Literal["get", "list", "create", "update", "delete", "add_users", "remove_users"],
    site_id: Optional[str] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
    url: Optional[str] = None,
    template: Optional[str] = None,
    owners: Optional[List[str]] = None,
    members: Optional[List[str]] = None,
    settings: Optional[SiteSettings] = None,
    search: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage SharePoint sites, their sharing settings and membership."""
    graph = get_graph(ctx)

    match action:
        case "get":
            require(action, site_id=site_id)
            return json_result(await graph.get(f"/sites/{site_id}"))

        case "list":
            sites = await graph.get_all("/sites", params={"search": search or "*"})
            return json_result(sites)

        case "create":
            require(action, title=title, url=url)
            site = await graph.post(
                "/sites/add",
                {
                    "displayName": title,
                    "description": description,
                    "webTemplate": template or "STS#0",
                    "url": url,
                },
            )
            if settings:
                await graph.patch(f"/sites/{site['id']}/settings", _settings_patch(settings))
            for owner in owners or []:
                await graph.post(f"/sites/{site['id']}/owners/$ref", _user_ref(owner))
            for member in members or []:
                await graph.post(f"/sites/{site['id']}/members/$ref", _user_ref(member))
            return json_result(site)

        case "update":
            require(action, site_id=site_id)
            patch = {}
            if title:
                patch["displayName"] = title
            if description:
                patch["description"] = description
            if patch:
                await graph.patch(f"/sites/{site_id}", patch)
            if settings:
                await graph.patch(f"/sites/{site_id}/settings", _settings_patch(settings))
            return text_result("SharePoint site updated successfully")

        case "delete":
            require(action, site_id=site_id)
            await graph.delete(f"/sites/{site_id}")
            return text_result("SharePoint site deleted successfully")

        case "add_users":
            require(action, site_id=site_id, members=members)
            for member in members:
                await graph.post(f"/sites/{site_id}/members/$ref", _user_ref(member))
            return text_result(f"{len(members)} user(s) added to SharePoint site successfully")

        case "remove_users":
            require(action, site_id=site_id, members=members)
            for member in members:
                await graph.delete(f"/sites/{site_id}/members/{member}/$ref")
            return text_result(f"{len(members)} user(s) removed from SharePoint site successfully")

        case _:
            raise unknown_action(action)


@handle_tool_errors
async def manage_sharepoint_lists(
    action: Literal["get", "list", "create", "update", "delete", "add_items", "get_items"],
    site_id: str,
    list_id: Optional[str] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
    template: Optional[str] = None,
    columns: Optional[List[ListColumn]] = None,
    items: Optional[List[Dict[str, Any]]] = None,
    filter: Optional[str] = None,
    top: Optional[int] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage SharePoint lists and list items.

    Items are plain field dictionaries, e.g. {"Title": "Laptop", "Status": "Ordered"}.
    """
    graph = get_graph(ctx)
    require(action, site_id=site_id)

    match action:
        case "get":
            require(action, list_id=list_id)
            return json_result(await graph.get(f"/sites/{site_id}/lists/{list_id}"))

        case "list":
            return json_result(await graph.get_all(f"/sites/{site_id}/lists"))

        case "create":
            require(action, title=title)
            created = await graph.post(
                f"/sites/{site_id}/lists",
                {
                    "displayName": title,
                    "description": description,
                    "list": {"template": template or "genericList"},
                },
            )
            for column in columns or []:
                definition = {
                    "name": column.name,
                    "required": column.required,
                    column.type: {},
                }
                if column.default_value is not None:
                    definition["defaultValue"] = {"value": column.default_value}
                await graph.post(f"/sites/{site_id}/lists/{created['id']}/columns", definition)
            return json_result(created)

        case "update":
            require(action, list_id=list_id)
            patch = {}
            if title:
                patch["displayName"] = title
            if description:
                patch["description"] = description
            require(action, changes=patch)
            await graph.patch(f"/sites/{site_id}/lists/{list_id}", patch)
            return text_result("SharePoint list updated successfully")

        case "delete":
            require(action, list_id=list_id)
            await graph.delete(f"/sites/{site_id}/lists/{list_id}")
            return text_result("SharePoint list deleted successfully")

        case "add_items":
            require(action, list_id=list_id, items=items)
            results = []
            for item in items:
                results.append(await graph.post(f"/sites/{site_id}/lists/{list_id}/items", {"fields": item}))
            return json_result(results)

        case "get_items":
            require(action, list_id=list_id)
            params = odata_params(filter=filter, top=top, expand="fields")
            return json_result(await graph.get(f"/sites/{site_id}/lists/{list_id}/items", params=params))

        case _:
            raise unknown_action(action)


TOOLS = [
    ToolSpec(
        manage_sharepoint_sites,
        "manage_sharepoint_sites",
        "Manage SharePoint Sites",
        "Manage SharePoint sites including creation, settings, sharing configuration and user membership.",
        annotations("Manage SharePoint Sites", destructive=True),
    ),
    ToolSpec(
        manage_sharepoint_lists,
        "manage_sharepoint_lists",
        "Manage SharePoint Lists",
        "Manage SharePoint lists, columns and list items.",
        annotations("Manage SharePoint Lists", destructive=True),
    ),
]
