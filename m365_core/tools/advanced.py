"""
Advanced Graph features: JSON batching, delta queries, change-notification
subscriptions and Microsoft Search.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import parse_qs, urlparse

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult
from pydantic import BaseModel

from ..context import get_graph
from ..errors import InvalidParamsError, handle_tool_errors
from ..webhooks import process_notification, validate_notification
from . import ToolSpec, annotations, json_result, require, text_result, unknown_action

MAX_BATCH_REQUESTS = 20
# Longest lifetime Graph accepts for most subscription resources.
SUBSCRIPTION_LIFETIME_MINUTES = 4230


class BatchRequest(BaseModel):
    id: Optional[str] = None
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "get", "post", "put", "patch", "delete"]
    url: str
    headers: Optional[Dict[str, str]] = None
    body: Optional[Any] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def link_token(link: Optional[str], name: str) -> str:
    """Pull a URL-decoded query value such as $deltatoken out of a continuation link."""
    if not link:
        return ""
    values = parse_qs(urlparse(link).query).get(name)
    return values[0] if values else ""


def batch_payload(requests: List[BatchRequest]) -> Dict[str, Any]:
    if not requests:
        raise InvalidParamsError("At least one request is required for batch operation")
    if len(requests) > MAX_BATCH_REQUESTS:
        raise InvalidParamsError(f"Maximum {MAX_BATCH_REQUESTS} requests allowed per batch, got {len(requests)}")

    entries = []
    for index, req in enumerate(requests):
        entry = {
            "id": req.id or str(index),
            "method": req.method.upper(),
            "url": req.url,
            "headers": dict(req.headers or {}),
        }
        if req.body is not None:
            entry["body"] = req.body
            entry["headers"].setdefault("Content-Type", "application/json")
        entries.append(entry)
    return {"requests": entries}


@handle_tool_errors
async def execute_graph_batch(
    requests: List[BatchRequest],
    graph_api_version: Literal["v1.0", "beta"] = "v1.0",
    ctx: Context = None,
) -> CallToolResult:
    """Run up to 20 Graph requests in one $batch call.

    Request urls are relative to the version root, e.g. "/users?$top=5".
    """
    payload = batch_payload(requests)
    response = await get_graph(ctx).post("/$batch", payload, version=graph_api_version)
    responses = response.get("responses", [])
    return json_result(
        {
            "responses": responses,
            "executedAt": _iso(_now()),
            "totalRequests": len(payload["requests"]),
            "successCount": sum(1 for r in responses if 200 <= r.get("status", 0) < 300),
            "errorCount": sum(1 for r in responses if r.get("status", 0) >= 400),
        }
    )


def delta_path(resource: str) -> str:
    resource = resource.rstrip("/")
    return resource if resource.endswith("/delta") else f"{resource}/delta"


def delta_result(response: Dict[str, Any]) -> Dict[str, Any]:
    delta_link = response.get("@odata.deltaLink")
    next_link = response.get("@odata.nextLink")
    value = response.get("value", [])
    return {
        "value": value,
        "deltaToken": link_token(delta_link, "$deltatoken"),
        "skipToken": link_token(next_link, "$skiptoken"),
        "deltaLink": delta_link,
        "nextLink": next_link,
        "hasMoreChanges": bool(next_link),
        "changeCount": len(value),
        "queriedAt": _iso(_now()),
    }


@handle_tool_errors
async def execute_delta_query(
    resource: str,
    delta_token: Optional[str] = None,
    skip_token: Optional[str] = None,
    select: Optional[List[str]] = None,
    graph_api_version: Literal["v1.0", "beta"] = "v1.0",
    ctx: Context = None,
) -> CallToolResult:
    """Fetch changes to a Graph collection (e.g. /users, /groups) since a previous query.

    Pass back deltaToken to resume after a completed round, or skipToken to
    read the next page of the current round.
    """
    require("delta", resource=resource)
    params = {}
    if skip_token:
        params["$skiptoken"] = skip_token
    elif delta_token:
        params["$deltatoken"] = delta_token
    if select:
        params["$select"] = ",".join(select)

    response = await get_graph(ctx).get(delta_path(resource), params=params or None, version=graph_api_version)
    return json_result(delta_result(response))


def _subscription_view(sub: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": sub.get("id"),
        "resource": sub.get("resource"),
        "changeType": sub.get("changeType"),
        "notificationUrl": sub.get("notificationUrl"),
        "expirationDateTime": sub.get("expirationDateTime"),
        "clientState": sub.get("clientState"),
    }


@handle_tool_errors
async def manage_graph_subscriptions(
    action: Literal["create", "update", "delete", "list", "validate_notification"],
    subscription_id: Optional[str] = None,
    resource: Optional[str] = None,
    change_types: Optional[List[Literal["created", "updated", "deleted"]]] = None,
    notification_url: Optional[str] = None,
    expiration_date_time: Optional[str] = None,
    client_state: Optional[str] = None,
    tls_version: Literal["v1_0", "v1_1", "v1_2", "v1_3"] = "v1_2",
    notification: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage change-notification subscriptions.

    New subscriptions default to the maximum lifetime (4230 minutes).
    validate_notification checks a notification body received on the webhook
    against client_state and returns the processed notifications; it makes no
    Graph call.
    """
    graph = get_graph(ctx)

    match action:
        case "create":
            require(action, resource=resource, change_types=change_types, notification_url=notification_url)
            payload = {
                "changeType": ",".join(change_types),
                "notificationUrl": notification_url,
                "resource": resource,
                "expirationDateTime": expiration_date_time
                or _iso(_now() + timedelta(minutes=SUBSCRIPTION_LIFETIME_MINUTES)),
                "latestSupportedTlsVersion": tls_version,
            }
            if client_state:
                payload["clientState"] = client_state
            return json_result(_subscription_view(await graph.post("/subscriptions", payload)))

        case "update":
            require(action, subscription_id=subscription_id)
            patch = {}
            if expiration_date_time:
                patch["expirationDateTime"] = expiration_date_time
            if notification_url:
                patch["notificationUrl"] = notification_url
            require(action, changes=patch)
            updated = await graph.patch(f"/subscriptions/{subscription_id}", patch)
            return json_result(_subscription_view(updated))

        case "delete":
            require(action, subscription_id=subscription_id)
            await graph.delete(f"/subscriptions/{subscription_id}")
            return json_result({"deleted": True, "subscriptionId": subscription_id, "deletedAt": _iso(_now())})

        case "list":
            subscriptions = await graph.get_all("/subscriptions")
            return json_result([_subscription_view(s) for s in subscriptions])

        case "validate_notification":
            require(action, notification=notification)
            if not validate_notification(notification, client_state):
                raise InvalidParamsError("notification is malformed or its clientState does not match")
            items = notification["value"] if "value" in notification else [notification]
            return json_result({"valid": True, "notifications": [process_notification(n) for n in items]})

        case _:
            raise unknown_action(action)


@handle_tool_errors
async def execute_graph_search(
    query_string: str,
    entity_types: List[str],
    from_index: int = 0,
    size: int = 25,
    fields: Optional[List[str]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Search across Microsoft 365 content with Microsoft Search.

    entity_types: message, event, drive, driveItem, list, listItem, site, person, ...
    """
    require("search", query_string=query_string, entity_types=entity_types)
    request = {
        "entityTypes": entity_types,
        "query": {"queryString": query_string},
        "from": from_index,
        "size": size,
    }
    if fields:
        request["fields"] = fields

    response = await get_graph(ctx).post("/search/query", {"requests": [request]})
    results = (response.get("value") or [{}])[0]
    container = (results.get("hitsContainers") or [{}])[0]
    if not container.get("hits"):
        return text_result(f"No results found for '{query_string}'")
    return json_result(
        {
            "hits": container.get("hits", []),
            "totalCount": container.get("total", 0),
            "moreResultsAvailable": container.get("moreResultsAvailable", False),
            "aggregations": container.get("aggregations", []),
            "searchedAt": _iso(_now()),
        }
    )


TOOLS = [
    ToolSpec(
        execute_graph_batch,
        "execute_graph_batch",
        "Execute Graph Batch",
        "Execute up to 20 Microsoft Graph requests in a single JSON batch call.",
        annotations("Execute Graph Batch", destructive=True),
    ),
    ToolSpec(
        execute_delta_query,
        "execute_delta_query",
        "Execute Delta Query",
        "Track incremental changes to users, groups and other Graph collections using delta tokens.",
        annotations("Execute Delta Query", read_only=True),
    ),
    ToolSpec(
        manage_graph_subscriptions,
        "manage_graph_subscriptions",
        "Manage Graph Subscriptions",
        "Create, renew, delete and list Microsoft Graph change-notification subscriptions, "
        "and validate notifications received on the webhook.",
        annotations("Manage Graph Subscriptions", destructive=True),
    ),
    ToolSpec(
        execute_graph_search,
        "execute_graph_search",
        "Execute Graph Search",
        "Search mail, files, sites, events and people across Microsoft 365 with Microsoft Search.",
        annotations("Execute Graph Search", read_only=True),
    ),
]
