"""
MCP prompts: guided Microsoft 365 administration workflows.

Each prompt renders a Markdown brief that tells the model which tools and
m365:// resources to use for the task. Prompts make no Graph calls.
"""

from typing import Callable, NamedTuple

from mcp.server import FastMCP


class PromptSpec(NamedTuple):
    fn: Callable[..., str]
    name: str
    description: str


def _tools(*names: str) -> str:
    return "\n".join(f"- `{n}`" for n in names)


def security_assessment(focus_area: str = "all", severity_threshold: str = "medium") -> str:
    scope = "every area below" if focus_area == "all" else f"the {focus_area} area"
    return f"""# Microsoft 365 security assessment

Assess the tenant's security posture, covering {scope}. Report findings of
severity {severity_threshold} and above.

## Identity
Review Conditional Access coverage, MFA for administrators, privileged role
assignments and risky sign-in activity.
{_tools("manage_cis_compliance", "manage_conditional_access_policies", "manage_azure_ad_roles", "search_audit_log")}

## Threats
Triage open security alerts and compare the current Secure Score with its trend.
{_tools("manage_alerts", "manage_compliance_monitoring", "manage_security_alert_policies")}

## Devices
Find non-compliant, unmanaged or stale devices on each platform.
{_tools("manage_intune_windows_compliance", "manage_intune_macos_compliance", "manage_azure_ad_devices")}

## Data
Check DLP coverage, sensitivity label adoption and external sharing.
{_tools("manage_dlp_policies", "manage_dlp_incidents", "manage_sensitivity_labels", "manage_sharepoint_governance_policies")}

Resources: `m365://tenant/organization`, `m365://users/directory`.

## Output
1. Executive summary with an overall risk rating
2. Findings grouped by severity, each with evidence
3. Remediation steps naming the tool that applies each fix
4. Quick wins that can be applied today
"""


def compliance_review(framework: str = "soc2", scope: str = "all") -> str:
    return f"""# Compliance review: {framework}

Review the tenant against {framework}, scope: {scope}.

1. Score the tenant with `manage_compliance_frameworks` (action `status`).
2. Rank the missing controls with `manage_gap_analysis`.
3. Run `manage_cis_compliance` (action `assess`) for identity baseline evidence.
4. Check that retention, DLP and alert policies exist for the data in scope:
{_tools("manage_retention_policies", "manage_dlp_policies", "manage_security_alert_policies")}
5. Produce the audit record with `generate_audit_reports` (report_type `full`).

## Output
- Compliance percentage and control summary
- Gaps by priority with the remediation for each
- Evidence collected and where it came from
- A remediation plan with owners and target dates
"""


def user_access_review(user_id: str = "", focus: str = "all") -> str:
    target = f"user `{user_id}`" if user_id else "all users, starting with privileged and guest accounts"
    return f"""# User access review

Review access for {target}. Focus: {focus}.

1. Read the profile and group memberships from `m365://users/{{user_id}}` and
   `m365://users/{{user_id}}/memberOf`.
2. List directory role assignments with `manage_azure_ad_roles`
   (action `list_role_assignments`).
3. Check sign-in and change history with `search_audit_log`.
4. Review licenses and mailbox configuration with `manage_user_settings` and
   `manage_exchange_settings`.

Flag standing admin rights, dormant accounts, guest accounts with broad group
access and memberships that no longer match the user's role. For leavers, use
`manage_offboarding`.
"""


def device_compliance_analysis(platform: str = "all", compliance_state: str = "noncompliant") -> str:
    return f"""# Device compliance analysis

Analyse {platform} devices in compliance state `{compliance_state}`.

{_tools("manage_intune_windows_devices", "manage_intune_macos_devices", "manage_intune_windows_compliance", "manage_intune_macos_compliance", "manage_intune_windows_policies", "manage_intune_macos_policies")}

1. List devices and their compliance state per platform.
2. For each failing device, read the per-policy details and the setting that fails.
3. Group failures by policy and by setting to find the common causes.
4. Recommend policy changes, or device actions such as `sync` or `force_evaluation`.

Report counts per platform, the top failing settings and the devices that
have not checked in for more than 30 days.
"""


def collaboration_governance(focus: str = "all") -> str:
    return f"""# Collaboration governance

Review how Teams, SharePoint and Microsoft 365 groups are governed. Focus: {focus}.

{_tools("manage_m365_groups", "manage_sharepoint_sites", "manage_sharepoint_governance_policies", "manage_teams_policies", "manage_retention_policies")}

Resources: `m365://sharepoint/sites`, `m365://groups/{{group_id}}/members`.

Look for groups without owners, sites shared with anyone links, guest access
that is broader than needed and content without a retention policy. Propose
naming, expiration, sharing and retention rules.
"""


def policy_backup_strategy(backup_scope: str = "all", output_format: str = "json") -> str:
    return f"""# Policy backup strategy

Export the tenant's policy configuration ({backup_scope}) as {output_format}
so it can be versioned and restored.

Read each policy family with its `list` action:
{_tools("manage_conditional_access_policies", "manage_intune_windows_policies", "manage_intune_macos_policies", "manage_dlp_policies", "manage_retention_policies", "manage_information_protection_policies", "manage_defender_policies", "manage_security_alert_policies")}

Store each export with `generate_word_document` or `call_microsoft_api` (PUT to
a document library). Record the export date, the tenant and the policy count
per family. Describe how often to repeat the backup and how to restore a
single policy with its `create` action.
"""


def conditional_access_design(scenario: str = "baseline", strictness: str = "balanced") -> str:
    return f"""# Conditional Access design: {scenario}

Design a {strictness} set of Conditional Access policies for the {scenario} scenario.

1. Review existing policies with `manage_conditional_access_policies` (action `list`).
2. Check the identity baseline with `manage_cis_compliance` (action `assess`).
3. Propose policies covering MFA for administrators, MFA for all users,
   blocking legacy authentication and compliant or hybrid-joined devices for
   sensitive apps.
4. Create every new policy disabled or in report-only mode, exclude break-glass
   accounts and only enable it after reviewing its sign-in impact in
   `search_audit_log`.

For each policy give its name, assignments, conditions, grant controls and the
rollout plan.
"""


def identity_protection_response(incident_type: str = "compromised_account", risk_level: str = "high") -> str:
    return f"""# Identity incident response: {incident_type}

Respond to a {risk_level}-risk {incident_type} incident.

1. Contain: block sign-in and revoke sessions with `manage_offboarding`
   (action `start`), or reset credentials through `manage_user_settings`.
2. Investigate: pull related alerts with `manage_alerts` and the account's
   recent activity with `search_audit_log`.
3. Scope: check role assignments (`manage_azure_ad_roles`), owned apps
   (`manage_azure_ad_apps`) and group memberships for changes made by the account.
4. Recover: restore access with MFA re-registration and close the alerts with
   `manage_alerts` (action `update_alert`).
5. Harden: propose Conditional Access or alert policy changes that would have
   caught it earlier (`manage_security_alert_policies`).

Keep a timeline of every action taken.
"""


def b2b_collaboration_setup(collaboration_type: str = "partner", security_level: str = "standard") -> str:
    return f"""# B2B collaboration setup: {collaboration_type}

Set up external collaboration for a {collaboration_type} at {security_level} security.

1. Check guest invitation and consent settings with `manage_cis_compliance`.
2. Decide which groups and sites guests may join and confirm their sharing
   settings with `manage_sharepoint_governance_policies`.
3. Require MFA for guests with a Conditional Access policy
   (`manage_conditional_access_policies`).
4. Create a dedicated group for the partner's guests with `manage_security_groups`
   and review its membership periodically.

Describe onboarding, access review and offboarding for guest accounts.
"""


def zero_trust_implementation(maturity_level: str = "initial", priority_area: str = "identity") -> str:
    return f"""# Zero Trust roadmap

Plan the move from the {maturity_level} maturity level, starting with {priority_area}.

Assess the current state with:
{_tools("manage_cis_compliance", "manage_compliance_monitoring", "manage_conditional_access_policies", "manage_intune_windows_compliance", "manage_dlp_policies")}

Structure the roadmap around verifying identities explicitly, using least
privilege access and assuming breach. For each phase list the policies to
create, the tool that creates them, the success measure and the expected
Secure Score change.
"""


def intune_policy_wizard(policy_goal: str = "", platform: str = "windows", security_level: str = "standard") -> str:
    goal = policy_goal or "the device configuration the user describes"
    tool = "manage_intune_macos_policies" if platform == "macos" else "manage_intune_windows_policies"
    return f"""# Intune policy wizard

Build a {security_level} {platform} policy for: {goal}.

1. Confirm the goal, target platform and the groups it should apply to.
2. List existing policies with `{tool}` (action `list`) to avoid duplicates.
3. Draft the policy settings and show them to the user before creating anything.
4. Create the policy with `{tool}` (action `create`), then assign it to a pilot
   group (action `assign`).
5. After the next device sync, verify the result with the platform's compliance tool.

Explain every setting in one line and call out settings that can lock users
out, such as encryption or password requirements.
"""


def intune_policy_troubleshoot(issue_description: str = "", policy_type: str = "configuration") -> str:
    issue = issue_description or "a policy that is not applying"
    return f"""# Intune policy troubleshooting

Troubleshoot a {policy_type} policy problem: {issue}.

1. Read the policy and its assignments with the platform's policies tool (action `get`).
2. Check the affected devices with the devices tools and trigger `sync`.
3. Read per-device compliance details to find the failing setting.
4. Check `search_audit_log` for recent edits to the policy.

Common causes: assignment to the wrong group, conflicting policies, devices
that have not checked in, and settings not supported on the OS version.
Give the most likely cause first and the fix for it.
"""


PROMPTS = [
    PromptSpec(security_assessment, "security_assessment", "Security posture assessment with prioritised recommendations"),
    PromptSpec(compliance_review, "compliance_review", "Review the tenant against a compliance framework"),
    PromptSpec(user_access_review, "user_access_review", "Review a user's (or all users') access and privileges"),
    PromptSpec(device_compliance_analysis, "device_compliance_analysis", "Analyse Intune device compliance failures"),
    PromptSpec(collaboration_governance, "collaboration_governance", "Review Teams, SharePoint and group governance"),
    PromptSpec(policy_backup_strategy, "policy_backup_strategy", "Export and version tenant policy configuration"),
    PromptSpec(conditional_access_design, "conditional_access_design", "Design a Conditional Access policy set"),
    PromptSpec(identity_protection_response, "identity_protection_response", "Respond to an identity compromise"),
    PromptSpec(b2b_collaboration_setup, "b2b_collaboration_setup", "Set up guest access for external collaboration"),
    PromptSpec(zero_trust_implementation, "zero_trust_implementation", "Plan a Zero Trust rollout"),
    PromptSpec(intune_policy_wizard, "intune_policy_wizard", "Step-by-step Intune policy creation"),
    PromptSpec(intune_policy_troubleshoot, "intune_policy_troubleshoot", "Diagnose an Intune policy that is not applying"),
]


def register_prompts(app: FastMCP) -> None:
    for spec in PROMPTS:
        app.prompt(name=spec.name, description=spec.description)(spec.fn)
