"""
Tool helpers and the registry of every tool module.

Each module exposes a TOOLS list of ToolSpec entries; the server registers
them in order.
"""

import json
from typing import Any, Callable, List, NamedTuple

from mcp.types import CallToolResult, TextContent, ToolAnnotations

from ..errors import InvalidParamsError


class ToolSpec(NamedTuple):
    fn: Callable
    name: str
    title: str
    description: str
    annotations: ToolAnnotations


def annotations(title: str, read_only: bool = False, destructive: bool = False, idempotent: bool = False) -> ToolAnnotations:
    return ToolAnnotations(
        title=title,
        readOnlyHint=read_only,
        destructiveHint=destructive,
        idempotentHint=idempotent or read_only,
        openWorldHint=True,
    )


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def text_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)])


def json_result(data: Any) -> CallToolResult:
    return text_result(format_json(data))


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def require(action: str, **fields: Any) -> None:
    """Raise InvalidParamsError naming every empty field required by `action`."""
    missing = [name for name, value in fields.items() if _is_missing(value)]
    if missing:
        raise InvalidParamsError(f"{', '.join(missing)} required for action '{action}'")


def unknown_action(action: str) -> InvalidParamsError:
    return InvalidParamsError(f"Unknown action: {action}")


def odata_params(
    filter: str = None,
    top: int = None,
    select: List[str] = None,
    expand: str = None,
    search: str = None,
    orderby: str = None,
) -> dict:
    params = {}
    if filter:
        params["$filter"] = filter
    if top:
        params["$top"] = top
    if select:
        params["$select"] = ",".join(select)
    if expand:
        params["$expand"] = expand
    if search:
        params["$search"] = search
    if orderby:
        params["$orderby"] = orderby
    return params


def all_tools() -> List[ToolSpec]:
    from . import (
        advanced,
        api,
        azure_ad,
        cis,
        compliance,
        diagnostics,
        directory,
        dlp,
        documents,
        exchange,
        intune,
        policies,
        security,
        sharepoint,
    )

    modules = (
        directory,
        exchange,
        sharepoint,
        azure_ad,
        security,
        policies,
        dlp,
        intune,
        compliance,
        cis,
        documents,
        advanced,
        api,
        diagnostics,
    )
    return [spec for module in modules for spec in module.TOOLS]
