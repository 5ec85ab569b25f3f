"""
CIS-aligned tenant checks against Entra ID configuration.

Each check reads tenant settings through Graph and reports PASS, FAIL or
UNKNOWN (the setting could not be read) with the evidence it based that on.
"""

from typing import Any, Awaitable, Callable, Dict, List, Literal, NamedTuple, Optional, Tuple

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult

from ..context import get_graph
from ..errors import InvalidParamsError, M365Error, handle_tool_errors
from ..graph import GraphClient
from ..logging_setup import get_logger
from . import ToolSpec, annotations, json_result, unknown_action

logger = get_logger(__name__)

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUS_UNKNOWN = "UNKNOWN"

CA_POLICIES = "/identity/conditionalAccess/policies"
AUTHORIZATION_POLICY = "/policies/authorizationPolicy"


class TenantFacts:
    """Graph reads shared by the checks of one assessment, each fetched once."""

    def __init__(self, graph: GraphClient):
        self.graph = graph
        self._cache: Dict[str, Any] = {}

    async def _get(self, path: str) -> Any:
        if path not in self._cache:
            self._cache[path] = await self.graph.get(path)
        return self._cache[path]

    async def enabled_ca_policies(self) -> List[Dict[str, Any]]:
        policies = (await self._get(CA_POLICIES)).get("value", [])
        return [p for p in policies if p.get("state") == "enabled"]

    async def authorization_policy(self) -> Dict[str, Any]:
        data = await self._get(AUTHORIZATION_POLICY)
        # v1.0 returns the singleton; some tenants still wrap it in a collection.
        if isinstance(data.get("value"), list):
            return data["value"][0] if data["value"] else {}
        return data


CheckResult = Tuple[str, str]


async def check_ca_enabled(facts: TenantFacts) -> CheckResult:
    enabled = await facts.enabled_ca_policies()
    if not enabled:
        return STATUS_FAIL, "No Conditional Access policy is in the 'enabled' state."
    return STATUS_PASS, f"Enabled Conditional Access policies: {len(enabled)}"


def _grant_controls(policy: Dict[str, Any]) -> set:
    return set((policy.get("grantControls") or {}).get("builtInControls") or [])


async def check_legacy_auth_blocked(facts: TenantFacts) -> CheckResult:
    blocking = [
        p
        for p in await facts.enabled_ca_policies()
        if "block" in _grant_controls(p)
        and {"exchangeActiveSync", "other"} & set((p.get("conditions") or {}).get("clientAppTypes") or [])
    ]
    if not blocking:
        return STATUS_FAIL, "No enabled Conditional Access policy blocks legacy authentication clients."
    names = ", ".join(p.get("displayName", "(no name)") for p in blocking[:10])
    return STATUS_PASS, f"Legacy authentication blocked by: {names}"


async def check_admin_mfa(facts: TenantFacts) -> CheckResult:
    covering = [
        p
        for p in await facts.enabled_ca_policies()
        if "mfa" in _grant_controls(p)
        and (((p.get("conditions") or {}).get("users") or {}).get("includeRoles") or [])
    ]
    if not covering:
        return STATUS_FAIL, "No enabled Conditional Access policy requires MFA for directory roles."
    names = ", ".join(p.get("displayName", "(no name)") for p in covering[:10])
    return STATUS_PASS, f"MFA required for administrative roles by: {names}"


async def check_guest_invites_restricted(facts: TenantFacts) -> CheckResult:
    allowed = (await facts.authorization_policy()).get("allowInvitesFrom")
    if allowed in ("adminsAndGuestInviters", "none"):
        return STATUS_PASS, f"Guest invitations allowed from: {allowed}"
    return STATUS_FAIL, f"Guest invitations allowed from: {allowed or 'unknown'}"


async def check_user_consent_disabled(facts: TenantFacts) -> CheckResult:
    permissions = (await facts.authorization_policy()).get("defaultUserRolePermissions") or {}
    grants = permissions.get("permissionGrantPoliciesAssigned") or []
    self_grants = [g for g in grants if g.startswith("ManagePermissionGrantsForSelf")]
    if self_grants:
        return STATUS_FAIL, f"Users may consent to apps through: {', '.join(self_grants)}"
    return STATUS_PASS, "Users cannot consent to applications on their own behalf."


async def check_user_app_registration_disabled(facts: TenantFacts) -> CheckResult:
    permissions = (await facts.authorization_policy()).get("defaultUserRolePermissions") or {}
    if permissions.get("allowedToCreateApps") is False:
        return STATUS_PASS, "Users cannot register applications."
    return STATUS_FAIL, "Users can register applications."


class CISControl(NamedTuple):
    id: str
    title: str
    section: str
    remediation: str
    check: Callable[[TenantFacts], Awaitable[CheckResult]]


CONTROLS = [
    CISControl(
        "M365-CIS-001",
        "Conditional Access policies are enabled",
        "Identity",
        "Create and enable Conditional Access policies, starting with MFA for all users.",
        check_ca_enabled,
    ),
    CISControl(
        "M365-CIS-002",
        "Legacy authentication is blocked",
        "Identity",
        "Enable a Conditional Access policy that blocks the 'Exchange ActiveSync' and 'Other clients' client apps.",
        check_legacy_auth_blocked,
    ),
    CISControl(
        "M365-CIS-003",
        "MFA is required for administrative roles",
        "Identity",
        "Enable a Conditional Access policy requiring MFA that includes the privileged directory roles.",
        check_admin_mfa,
    ),
    CISControl(
        "M365-CIS-004",
        "Guest invitations are limited to admins and guest inviters",
        "External collaboration",
        "Set 'Guest invite restrictions' to 'Only users assigned to specific admin roles can invite guest users'.",
        check_guest_invites_restricted,
    ),
    CISControl(
        "M365-CIS-005",
        "User consent to applications is disabled",
        "Applications",
        "Set 'User consent for applications' to 'Do not allow user consent'.",
        check_user_consent_disabled,
    ),
    CISControl(
        "M365-CIS-006",
        "Users cannot register applications",
        "Applications",
        "Set 'Users can register applications' to 'No'.",
        check_user_app_registration_disabled,
    ),
]

CONTROLS_BY_ID = {c.id: c for c in CONTROLS}


def _describe(control: CISControl) -> Dict[str, str]:
    return {"id": control.id, "title": control.title, "section": control.section, "remediation": control.remediation}


async def assess(graph: GraphClient, controls: List[CISControl]) -> List[Dict[str, Any]]:
    facts = TenantFacts(graph)
    findings = []
    for control in controls:
        try:
            status, evidence = await control.check(facts)
        except M365Error as e:
            logger.warning("cis_check_unknown", control=control.id, error=e.message)
            status, evidence = STATUS_UNKNOWN, str(e)
        findings.append({**_describe(control), "status": status, "evidence": evidence})
    return findings


@handle_tool_errors
async def manage_cis_compliance(
    action: Literal["assess", "get_benchmark"],
    control_ids: Optional[List[str]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Assess the tenant against CIS-aligned Entra ID controls, or list the controls.

    control_ids limits assess to the named controls.
    """
    match action:
        case "get_benchmark":
            return json_result({"controls": [_describe(c) for c in CONTROLS], "count": len(CONTROLS)})
        case "assess":
            unknown = [i for i in control_ids or [] if i not in CONTROLS_BY_ID]
            if unknown:
                raise InvalidParamsError(f"Unknown CIS control(s): {', '.join(unknown)}")
            selected = [CONTROLS_BY_ID[i] for i in control_ids] if control_ids else CONTROLS
            findings = await assess(get_graph(ctx), selected)
            summary = {
                status.lower(): sum(f["status"] == status for f in findings)
                for status in (STATUS_PASS, STATUS_FAIL, STATUS_UNKNOWN)
            }
            return json_result({"summary": {"total": len(findings), **summary}, "findings": findings})
        case _:
            raise unknown_action(action)


TOOLS = [
    ToolSpec(
        manage_cis_compliance,
        "manage_cis_compliance",
        "Manage CIS Compliance",
        "Assess Entra ID settings against CIS-aligned controls (Conditional Access, legacy auth, admin MFA, "
        "guest invites, app consent and registration) with evidence and remediation.",
        annotations("Manage CIS Compliance", read_only=True),
    ),
]
