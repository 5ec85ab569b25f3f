"""
Generic passthrough to Microsoft Graph and Azure Resource Manager.
"""

import json
from typing import Any, Dict, List, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult

from ..context import get_graph
from ..errors import InvalidParamsError, handle_tool_errors
from ..graph import is_absolute_url
from ..logging_setup import get_logger
from . import ToolSpec, annotations, format_json, text_result

logger = get_logger(__name__)


def azure_path(path: str, subscription_id: Optional[str]) -> str:
    """Prefix /subscriptions/{id} unless the path already names a subscription."""
    if not path.startswith("/"):
        path = "/" + path
    if subscription_id and not path.lower().startswith("/subscriptions/"):
        return f"/subscriptions/{subscription_id}{path}"
    return path


def strip_odata(data: Any) -> Any:
    """Drop @odata.* annotations at every level."""
    if isinstance(data, dict):
        return {k: strip_odata(v) for k, v in data.items() if not k.startswith("@odata.")}
    if isinstance(data, list):
        return [strip_odata(v) for v in data]
    return data


def render(data: Any, response_format: str) -> str:
    match response_format:
        case "raw":
            return json.dumps(data, default=str)
        case "minimal":
            return format_json(strip_odata(data))
        case _:
            return format_json(data)


@handle_tool_errors
async def call_microsoft_api(
    api_type: Literal["graph", "azure"],
    path: str,
    method: Literal["get", "post", "put", "patch", "delete"] = "get",
    api_version: Optional[str] = None,
    subscription_id: Optional[str] = None,
    query_params: Optional[Dict[str, str]] = None,
    body: Optional[Any] = None,
    graph_api_version: Literal["v1.0", "beta"] = "v1.0",
    fetch_all: bool = False,
    consistency_level: Optional[str] = None,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    timeout: float = 30.0,
    custom_headers: Optional[Dict[str, str]] = None,
    response_format: Literal["json", "raw", "minimal"] = "json",
    select_fields: Optional[List[str]] = None,
    expand_fields: Optional[List[str]] = None,
    batch_size: Optional[int] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Call any Microsoft Graph or Azure Resource Manager endpoint.

    Graph paths are relative to the version root (e.g. "/users"). Azure paths
    need api_version; subscription_id is prefixed when the path does not
    already start with /subscriptions/. retry_delay and timeout are seconds.
    """
    if not path:
        raise InvalidParamsError("path is required")
    if is_absolute_url(path):
        raise InvalidParamsError("path must be relative to the API root, not an absolute URL")
    if api_type == "azure" and not api_version:
        raise InvalidParamsError("api_version is required for api_type 'azure'")
    if max_retries < 0 or retry_delay < 0 or timeout <= 0:
        raise InvalidParamsError("max_retries and retry_delay must be >= 0 and timeout must be > 0")

    params: Dict[str, Any] = dict(query_params or {})
    headers: Dict[str, str] = dict(custom_headers or {})

    if api_type == "azure":
        request_path = azure_path(path, subscription_id)
        params["api-version"] = api_version
    else:
        request_path = path
        if consistency_level:
            headers["ConsistencyLevel"] = consistency_level
        if select_fields:
            params["$select"] = ",".join(select_fields)
        if expand_fields:
            params["$expand"] = ",".join(expand_fields)
        if batch_size:
            params["$top"] = batch_size

    graph = get_graph(ctx)
    options = dict(
        api=api_type,
        version=graph_api_version if api_type == "graph" else None,
        headers=headers or None,
        timeout=timeout,
        max_retries=max_retries,
        retry_delay=retry_delay,
    )

    logger.info("api_call", method=method.upper(), path=request_path, api=api_type)
    if fetch_all and method == "get":
        items = await graph.get_all(request_path, params=params or None, **options)
        data = {"value": items, "count": len(items)}
    else:
        data = await graph.request(
            method,
            request_path,
            params=params or None,
            json=body if method in ("post", "put", "patch") else None,
            **options,
        )

    return text_result(render(data, response_format))


TOOLS = [
    ToolSpec(
        call_microsoft_api,
        "call_microsoft_api",
        "Call Microsoft API",
        "Call any Microsoft Graph or Azure Resource Manager endpoint with retries, pagination and field selection. "
        "Use when no dedicated tool covers the operation.",
        annotations("Call Microsoft API", destructive=True),
    ),
]
