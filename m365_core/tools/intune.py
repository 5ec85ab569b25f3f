"""
Intune device, policy, app and compliance management for macOS and Windows.

Both platforms share one implementation; a Platform record carries the
OS-specific filter values and OData types.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult

from ..context import get_graph
from ..errors import InvalidParamsError, UpstreamError, handle_tool_errors
from ..graph import GraphClient, odata_quote
from ..logging_setup import get_logger
from . import ToolSpec, annotations, format_json, require, text_result, unknown_action

logger = get_logger(__name__)

MANAGED_DEVICES = "/deviceManagement/managedDevices"
MOBILE_APPS = "/deviceAppManagement/mobileApps"
BITLOCKER_KEYS = "/informationProtection/bitlocker/recoveryKeys"

POLICY_PATHS = {
    "Configuration": "/deviceManagement/deviceConfigurations",
    "Compliance": "/deviceManagement/deviceCompliancePolicies",
    "Security": "/deviceManagement/intents",
    "AppProtection": "/deviceAppManagement/managedAppPolicies",
}

PolicyType = Literal["Configuration", "Compliance", "Security", "AppProtection"]

DEFAULT_COMPLIANCE_ACTIONS = [
    {
        "ruleName": "PasswordRequired",
        "scheduledActionConfigurations": [{"actionType": "block", "gracePeriodHours": 0}],
    }
]


@dataclass(frozen=True)
class Platform:
    label: str
    operating_system: str
    configuration_type: str
    compliance_type: str
    app_settings_type: str
    app_types: Dict[str, str] = field(default_factory=dict)
    enrollment: Dict[str, Any] = field(default_factory=dict)


MACOS = Platform(
    label="macOS",
    operating_system="macOS",
    configuration_type="#microsoft.graph.macOSCustomConfiguration",
    compliance_type="#microsoft.graph.macOSCompliancePolicy",
    app_settings_type="#microsoft.graph.macOsLobAppAssignmentSettings",
    app_types={
        "macOSLobApp": "#microsoft.graph.macOSLobApp",
        "macOSDmgApp": "#microsoft.graph.macOSDmgApp",
        "macOSPkgApp": "#microsoft.graph.macOSPkgApp",
        "macOSMicrosoftEdgeApp": "#microsoft.graph.macOSMicrosoftEdgeApp",
        "macOSOfficeSuiteApp": "#microsoft.graph.macOSOfficeSuiteApp",
    },
    enrollment={
        "@odata.type": "#microsoft.graph.deviceEnrollmentPlatformRestrictionsConfiguration",
        "displayName": "macOS Device Enrollment",
        "description": "Automated macOS device enrollment",
        "macOSRestriction": {"platformBlocked": False, "personalDeviceEnrollmentBlocked": False},
    },
)

WINDOWS = Platform(
    label="Windows",
    operating_system="Windows",
    configuration_type="#microsoft.graph.windows10GeneralConfiguration",
    compliance_type="#microsoft.graph.windows10CompliancePolicy",
    app_settings_type="#microsoft.graph.win32LobAppAssignmentSettings",
    app_types={
        "win32LobApp": "#microsoft.graph.win32LobApp",
        "microsoftStoreForBusinessApp": "#microsoft.graph.microsoftStoreForBusinessApp",
        "officeSuiteApp": "#microsoft.graph.officeSuiteApp",
        "webApp": "#microsoft.graph.webApp",
        "microsoftEdgeApp": "#microsoft.graph.windowsMicrosoftEdgeApp",
    },
    enrollment={
        "@odata.type": "#microsoft.graph.windows10EnrollmentCompletionPageConfiguration",
        "displayName": "Windows Device Enrollment",
        "description": "Automated Windows device enrollment",
        "showInstallationProgress": True,
        "blockDeviceSetupRetryByUser": False,
        "allowDeviceResetOnInstallFailure": True,
        "allowLogCollectionOnInstallFailure": True,
        "customErrorMessage": "Setup could not be completed. Please try again or contact your support person for help.",
        "installProgressTimeoutInMinutes": 60,
        "allowDeviceUseOnInstallFailure": True,
        "selectedMobileAppIds": [],
        "trackInstallProgressForAutopilotOnly": False,
        "disableUserStatusTrackingAfterFirstUser": True,
    },
)

# Device actions that are a bare POST to the managed device.
DEVICE_ACTIONS = {
    "retire": ("retire", None),
    "wipe": ("wipe", {"keepEnrollmentData": False, "keepUserData": False}),
    "restart": ("rebootNow", None),
    "sync": ("syncDevice", None),
    "remote_lock": ("remoteLock", None),
    "collect_logs": ("createDeviceLogCollectionRequest", {"templateType": "predefined"}),
    "autopilot_reset": ("wipe", {"keepEnrollmentData": True, "keepUserData": False}),
}


def _result(platform: Platform, area: str, result: Any) -> CallToolResult:
    return text_result(f"{platform.label} {area} Management Result:\n{format_json(result)}")


def _group_targets(group_ids: List[str]) -> List[Dict[str, Any]]:
    return [
        {"target": {"@odata.type": "#microsoft.graph.groupAssignmentTarget", "groupId": group_id}}
        for group_id in group_ids
    ]


async def _devices(
    platform: Platform,
    graph: GraphClient,
    action: str,
    device_id: Optional[str],
    filter: Optional[str],
) -> CallToolResult:
    match action:
        case "list":
            os_filter = f"operatingSystem eq '{platform.operating_system}'"
            if filter:
                os_filter += f" and {filter}"
            result = await graph.get(MANAGED_DEVICES, params={"$filter": os_filter})
        case "get":
            require(action, device_id=device_id)
            result = await graph.get(f"{MANAGED_DEVICES}/{device_id}")
        case "enroll":
            result = await graph.post("/deviceManagement/deviceEnrollmentConfigurations", dict(platform.enrollment))
        case "bitlocker_recovery":
            require(action, device_id=device_id)
            result = await graph.get(BITLOCKER_KEYS, params={"$filter": f"deviceId eq {odata_quote(device_id)}"})
        case _ if action in DEVICE_ACTIONS:
            require(action, device_id=device_id)
            endpoint, body = DEVICE_ACTIONS[action]
            response = await graph.post(f"{MANAGED_DEVICES}/{device_id}/{endpoint}", body or {})
            result = response or {"message": f"{action} command sent to device {device_id}"}
        case _:
            raise unknown_action(action)
    return _result(platform, "Device", result)


async def _policies(
    platform: Platform,
    graph: GraphClient,
    action: str,
    policy_type: str,
    policy_id: Optional[str],
    name: Optional[str],
    description: Optional[str],
    settings: Optional[Dict[str, Any]],
    assignment_groups: Optional[List[str]],
) -> CallToolResult:
    if policy_type not in POLICY_PATHS:
        raise InvalidParamsError(f"Unknown policy type: {policy_type}")
    base = POLICY_PATHS[policy_type]

    match action:
        case "list":
            params = None
            if policy_type == "Configuration":
                params = {"$filter": f"isof('{platform.configuration_type[1:]}')"}
            elif policy_type == "Compliance":
                params = {"$filter": f"isof('{platform.compliance_type[1:]}')"}
            result = await graph.get(base, params=params)
        case "get":
            require(action, policy_id=policy_id)
            result = await graph.get(f"{base}/{policy_id}")
        case "create":
            require(action, name=name)
            payload = {"displayName": name, "description": description or "", **(settings or {})}
            if policy_type == "Configuration":
                payload.setdefault("@odata.type", platform.configuration_type)
            elif policy_type == "Compliance":
                payload.setdefault("@odata.type", platform.compliance_type)
                payload.setdefault("scheduledActionsForRule", DEFAULT_COMPLIANCE_ACTIONS)
            result = await graph.post(base, payload)
        case "update":
            require(action, policy_id=policy_id)
            payload = dict(settings or {})
            if name:
                payload["displayName"] = name
            if description:
                payload["description"] = description
            require(action, changes=payload)
            await graph.patch(f"{base}/{policy_id}", payload)
            result = {"message": f"{policy_type} policy {policy_id} updated successfully"}
        case "delete":
            require(action, policy_id=policy_id)
            await graph.delete(f"{base}/{policy_id}")
            result = {"message": f"{policy_type} policy {policy_id} deleted successfully"}
        case "assign":
            require(action, policy_id=policy_id, assignment_groups=assignment_groups)
            await graph.post(f"{base}/{policy_id}/assign", {"assignments": _group_targets(assignment_groups)})
            result = {"message": f"Policy {policy_id} assigned to {len(assignment_groups)} group(s)"}
        case _:
            raise unknown_action(action)
    return _result(platform, "Policy", result)


async def _apps(
    platform: Platform,
    graph: GraphClient,
    action: str,
    app_id: Optional[str],
    app_type: Optional[str],
    name: Optional[str],
    version: Optional[str],
    assignment_groups: Optional[List[str]],
    install_intent: str,
) -> CallToolResult:
    match action:
        case "list":
            params = None
            if app_type:
                if app_type not in platform.app_types:
                    raise InvalidParamsError(
                        f"Unknown {platform.label} app type: {app_type}. "
                        f"Expected one of: {', '.join(platform.app_types)}"
                    )
                params = {"$filter": f"isof('{platform.app_types[app_type][1:]}')"}
            result = await graph.get(MOBILE_APPS, params=params)
        case "get":
            require(action, app_id=app_id)
            result = await graph.get(f"{MOBILE_APPS}/{app_id}")
        case "deploy":
            require(action, app_id=app_id, assignment_groups=assignment_groups)
            assignments = []
            for target in _group_targets(assignment_groups):
                target["@odata.type"] = "#microsoft.graph.mobileAppAssignment"
                target["intent"] = install_intent
                target["settings"] = {"@odata.type": platform.app_settings_type}
                assignments.append(target)
            await graph.post(f"{MOBILE_APPS}/{app_id}/assign", {"mobileAppAssignments": assignments})
            result = {"message": f"App {app_id} deployed to {len(assignment_groups)} group(s) as {install_intent}"}
        case "update":
            require(action, app_id=app_id)
            payload = {}
            if name:
                payload["displayName"] = name
            if version:
                payload["displayVersion"] = version
            require(action, changes=payload)
            await graph.patch(f"{MOBILE_APPS}/{app_id}", payload)
            result = {"message": f"App {app_id} updated successfully"}
        case "remove":
            require(action, app_id=app_id)
            await graph.delete(f"{MOBILE_APPS}/{app_id}")
            result = {"message": f"App {app_id} removed successfully"}
        case "sync_status":
            require(action, app_id=app_id)
            result = await graph.get(f"{MOBILE_APPS}/{app_id}/deviceStatuses")
        case _:
            raise unknown_action(action)
    return _result(platform, "App", result)


async def _compliance(
    platform: Platform,
    graph: GraphClient,
    action: str,
    device_id: Optional[str],
    policies: Optional[List[str]],
) -> CallToolResult:
    match action:
        case "get_status":
            if device_id:
                result = await graph.get(f"{MANAGED_DEVICES}/{device_id}/deviceCompliancePolicyStates")
            else:
                result = await graph.get("/deviceManagement/deviceCompliancePolicyDeviceStateSummary")
        case "get_details":
            require(action, device_id=device_id)
            result = await graph.get(f"{MANAGED_DEVICES}/{device_id}/deviceCompliancePolicyStates")
            if policies:
                result["value"] = [state for state in result.get("value", []) if state.get("id") in policies]
        case "update_policy":
            require(action, policies=policies)
            outcomes = []
            for policy_id in policies:
                path = f"{POLICY_PATHS['Compliance']}/{policy_id}"
                try:
                    policy = await graph.get(path, params={"$expand": "scheduledActionsForRule"})
                    await graph.post(
                        f"{path}/scheduleActionsForRules",
                        {"deviceComplianceScheduledActionForRules": policy.get("scheduledActionsForRule", [])},
                    )
                    outcomes.append({"policyId": policy_id, "status": "updated", "name": policy.get("displayName")})
                except UpstreamError as e:
                    logger.warning("compliance_policy_refresh_failed", policy_id=policy_id, error=e.message)
                    outcomes.append({"policyId": policy_id, "status": "failed", "error": e.message})
            result = {"updatedPolicies": outcomes}
        case "force_evaluation":
            require(action, device_id=device_id)
            await graph.post(f"{MANAGED_DEVICES}/{device_id}/syncDevice", {})
            result = {"message": f"Compliance evaluation triggered for device {device_id}"}
        case "get_bitlocker_keys":
            require(action, device_id=device_id)
            result = await graph.get(BITLOCKER_KEYS, params={"$filter": f"deviceId eq {odata_quote(device_id)}"})
        case "get_filevault_key":
            require(action, device_id=device_id)
            result = await graph.get(f"{MANAGED_DEVICES}/{device_id}/getFileVaultKey", version="beta")
        case _:
            raise unknown_action(action)
    return _result(platform, "Compliance", result)


MacDeviceAction = Literal["list", "get", "enroll", "retire", "wipe", "restart", "sync", "remote_lock", "collect_logs"]
WindowsDeviceAction = Literal[
    "list", "get", "enroll", "retire", "wipe", "restart", "sync", "remote_lock", "collect_logs",
    "bitlocker_recovery", "autopilot_reset",
]
PolicyAction = Literal["list", "get", "create", "update", "delete", "assign"]
AppAction = Literal["list", "get", "deploy", "update", "remove", "sync_status"]
InstallIntent = Literal["available", "required", "uninstall", "availableWithoutEnrollment"]


@handle_tool_errors
async def manage_intune_macos_devices(
    action: MacDeviceAction,
    device_id: Optional[str] = None,
    filter: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Intune-enrolled macOS devices."""
    return await _devices(MACOS, get_graph(ctx), action, device_id, filter)


@handle_tool_errors
async def manage_intune_windows_devices(
    action: WindowsDeviceAction,
    device_id: Optional[str] = None,
    filter: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Manage Intune-enrolled Windows devices, including BitLocker recovery and Autopilot reset."""
    return await _devices(WINDOWS, get_graph(ctx), action, device_id, filter)


@handle_tool_errors
async def manage_intune_macos_policies(
    action: PolicyAction,
    policy_type: PolicyType,
    policy_id: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
    assignment_groups: Optional[List[str]] = None,
    ctx: Context = None,
) -> CallToolResult:
    return await _policies(
        MACOS, get_graph(ctx), action, policy_type, policy_id, name, description, settings, assignment_groups
    )


@handle_tool_errors
async def manage_intune_windows_policies(
    action: PolicyAction,
    policy_type: PolicyType,
    policy_id: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
    assignment_groups: Optional[List[str]] = None,
    ctx: Context = None,
) -> CallToolResult:
    return await _policies(
        WINDOWS, get_graph(ctx), action, policy_type, policy_id, name, description, settings, assignment_groups
    )


@handle_tool_errors
async def manage_intune_macos_apps(
    action: AppAction,
    app_id: Optional[str] = None,
    app_type: Optional[str] = None,
    name: Optional[str] = None,
    version: Optional[str] = None,
    assignment_groups: Optional[List[str]] = None,
    install_intent: InstallIntent = "available",
    ctx: Context = None,
) -> CallToolResult:
    return await _apps(
        MACOS, get_graph(ctx), action, app_id, app_type, name, version, assignment_groups, install_intent
    )


@handle_tool_errors
async def manage_intune_windows_apps(
    action: AppAction,
    app_id: Optional[str] = None,
    app_type: Optional[str] = None,
    name: Optional[str] = None,
    version: Optional[str] = None,
    assignment_groups: Optional[List[str]] = None,
    install_intent: InstallIntent = "available",
    ctx: Context = None,
) -> CallToolResult:
    return await _apps(
        WINDOWS, get_graph(ctx), action, app_id, app_type, name, version, assignment_groups, install_intent
    )


@handle_tool_errors
async def manage_intune_macos_compliance(
    action: Literal["get_status", "get_details", "update_policy", "force_evaluation", "get_filevault_key"],
    device_id: Optional[str] = None,
    policies: Optional[List[str]] = None,
    ctx: Context = None,
) -> CallToolResult:
    return await _compliance(MACOS, get_graph(ctx), action, device_id, policies)


@handle_tool_errors
async def manage_intune_windows_compliance(
    action: Literal["get_status", "get_details", "update_policy", "force_evaluation", "get_bitlocker_keys"],
    device_id: Optional[str] = None,
    policies: Optional[List[str]] = None,
    ctx: Context = None,
) -> CallToolResult:
    return await _compliance(WINDOWS, get_graph(ctx), action, device_id, policies)


TOOLS = [
    ToolSpec(
        manage_intune_macos_devices,
        "manage_intune_macos_devices",
        "Manage Intune macOS Devices",
        "List, inspect, enroll, retire, wipe, restart, sync, lock and collect logs from macOS devices managed by Intune.",
        annotations("Manage Intune macOS Devices", destructive=True),
    ),
    ToolSpec(
        manage_intune_macos_policies,
        "manage_intune_macos_policies",
        "Manage Intune macOS Policies",
        "Manage macOS configuration, compliance, security and app protection policies and their group assignments.",
        annotations("Manage Intune macOS Policies", destructive=True),
    ),
    ToolSpec(
        manage_intune_macos_apps,
        "manage_intune_macos_apps",
        "Manage Intune macOS Apps",
        "List, deploy, update and remove macOS apps in Intune and check installation status.",
        annotations("Manage Intune macOS Apps", destructive=True),
    ),
    ToolSpec(
        manage_intune_macos_compliance,
        "manage_intune_macos_compliance",
        "Manage Intune macOS Compliance",
        "Check macOS compliance state, refresh compliance policies, force evaluation and retrieve FileVault keys.",
        annotations("Manage Intune macOS Compliance"),
    ),
    ToolSpec(
        manage_intune_windows_devices,
        "manage_intune_windows_devices",
        "Manage Intune Windows Devices",
        "List, inspect, enroll, retire, wipe, restart, sync, lock and collect logs from Windows devices, "
        "plus BitLocker recovery keys and Autopilot reset.",
        annotations("Manage Intune Windows Devices", destructive=True),
    ),
    ToolSpec(
        manage_intune_windows_policies,
        "manage_intune_windows_policies",
        "Manage Intune Windows Policies",
        "Manage Windows configuration, compliance, security and app protection policies and their group assignments.",
        annotations("Manage Intune Windows Policies", destructive=True),
    ),
    ToolSpec(
        manage_intune_windows_apps,
        "manage_intune_windows_apps",
        "Manage Intune Windows Apps",
        "List, deploy, update and remove Windows apps in Intune and check installation status.",
        annotations("Manage Intune Windows Apps", destructive=True),
    ),
    ToolSpec(
        manage_intune_windows_compliance,
        "manage_intune_windows_compliance",
        "Manage Intune Windows Compliance",
        "Check Windows compliance state, refresh compliance policies, force evaluation and retrieve BitLocker keys.",
        annotations("Manage Intune Windows Compliance"),
    ),
]
