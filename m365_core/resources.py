"""
Read-only m365:// resources. Each one is a single Graph GET.
"""

import inspect
import json
import re
from typing import Any, Callable, Dict, NamedTuple, Optional

from mcp.server import FastMCP

from .graph import GraphClient
from .logging_setup import get_logger

logger = get_logger(__name__)


class ResourceSpec(NamedTuple):
    uri: str
    name: str
    description: str
    path: str
    params: Optional[Dict[str, Any]] = None


RESOURCES = [
    ResourceSpec(
        "m365://tenant/organization",
        "tenant_organization",
        "Tenant organization profile",
        "/organization",
    ),
    ResourceSpec(
        "m365://tenant/domains",
        "tenant_domains",
        "Verified and unverified domains of the tenant",
        "/domains",
    ),
    ResourceSpec(
        "m365://tenant/subscriptions",
        "tenant_subscriptions",
        "Licenses (subscribed SKUs) and their consumption",
        "/subscribedSkus",
    ),
    ResourceSpec(
        "m365://users/directory",
        "user_directory",
        "First page of the user directory",
        "/users",
        {"$select": "id,displayName,userPrincipalName,mail,accountEnabled", "$top": 100},
    ),
    ResourceSpec(
        "m365://sharepoint/sites",
        "sharepoint_sites",
        "SharePoint sites visible to the application",
        "/sites",
        {"search": "*"},
    ),
    ResourceSpec(
        "m365://users/{user_id}",
        "user",
        "A single user by object ID or UPN",
        "/users/{user_id}",
    ),
    ResourceSpec(
        "m365://users/{user_id}/memberOf",
        "user_memberships",
        "Groups and directory roles a user belongs to",
        "/users/{user_id}/memberOf",
    ),
    ResourceSpec(
        "m365://groups/{group_id}/members",
        "group_members",
        "Direct members of a group",
        "/groups/{group_id}/members",
    ),
    ResourceSpec(
        "m365://sites/{site_id}",
        "sharepoint_site",
        "A SharePoint site",
        "/sites/{site_id}",
    ),
    ResourceSpec(
        "m365://sites/{site_id}/lists",
        "sharepoint_site_lists",
        "Lists of a SharePoint site",
        "/sites/{site_id}/lists",
    ),
    ResourceSpec(
        "m365://sites/{site_id}/lists/{list_id}",
        "sharepoint_list",
        "A SharePoint list with its columns",
        "/sites/{site_id}/lists/{list_id}",
        {"$expand": "columns"},
    ),
]


def make_reader(graph: GraphClient, spec: ResourceSpec) -> Callable:
    """Build the read function FastMCP calls; template variables become keyword arguments."""

    async def read(**variables: str) -> str:
        path = spec.path.format(**variables)
        logger.debug("resource_read", uri=spec.uri, path=path)
        data = await graph.get(path, params=spec.params)
        return json.dumps(data, indent=2, default=str)

    return read


def _with_signature(fn: Callable, spec: ResourceSpec) -> Callable:
    """FastMCP matches URI template variables against the function's parameters."""
    names = re.findall(r"\{(\w+)\}", spec.uri)
    fn.__signature__ = inspect.Signature(
        [inspect.Parameter(n, inspect.Parameter.KEYWORD_ONLY, annotation=str) for n in names],
        return_annotation=str,
    )
    fn.__annotations__ = {**{n: str for n in names}, "return": str}
    fn.__name__ = spec.name
    return fn


def register_resources(app: FastMCP, graph: GraphClient) -> None:
    for spec in RESOURCES:
        reader = _with_signature(make_reader(graph, spec), spec)
        app.resource(spec.uri, name=spec.name, description=spec.description, mime_type="application/json")(reader)
