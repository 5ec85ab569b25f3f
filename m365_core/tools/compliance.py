"""
Compliance posture from Microsoft Secure Score: framework status, gap
analysis, monitoring and audit reports.
"""

import csv
import io
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from mcp.server.fastmcp import Context
from mcp.types import CallToolResult

from ..context import get_graph
from ..errors import InvalidParamsError, handle_tool_errors
from ..graph import GraphClient
from . import ToolSpec, annotations, json_result, require, text_result, unknown_action
from .documents import Section, render_html

FRAMEWORKS = {
    "hitrust": {
        "id": "hitrust",
        "name": "HITRUST CSF",
        "version": "11.1",
        "description": "Health Information Trust Alliance Common Security Framework",
        "controlFamilies": 49,
        "totalControls": 156,
    },
    "iso27001": {
        "id": "iso27001",
        "name": "ISO 27001:2022",
        "version": "2022",
        "description": "Information Security Management System",
        "controlFamilies": 14,
        "totalControls": 114,
    },
    "soc2": {
        "id": "soc2",
        "name": "SOC 2 Type II",
        "version": "2017",
        "description": "Service Organization Control 2",
        "controlFamilies": 5,
        "totalControls": 64,
    },
}


def percentage(current: float, maximum: float) -> int:
    return round(current / maximum * 100) if maximum else 0


async def framework_status(graph: GraphClient, framework: str) -> Dict[str, Any]:
    """Summarise tenant posture from the latest Secure Score.

    Each control is implemented when it scores its maximum, partial when it
    scores anything, and not implemented otherwise.
    """
    scores = await graph.get("/security/secureScores", params={"$top": 1})
    profiles = await graph.get_all("/security/secureScoreControlProfiles")
    latest = (scores.get("value") or [{}])[0]

    max_by_control = {p.get("id"): p.get("maxScore") or 0 for p in profiles}
    summary = {"total": 0, "compliant": 0, "nonCompliant": 0, "partiallyCompliant": 0}
    for control in latest.get("controlScores", []):
        score = control.get("score") or 0
        maximum = max_by_control.get(control.get("controlName"), 0)
        summary["total"] += 1
        if maximum and score >= maximum:
            summary["compliant"] += 1
        elif score > 0:
            summary["partiallyCompliant"] += 1
        else:
            summary["nonCompliant"] += 1

    current = latest.get("currentScore") or 0
    maximum = latest.get("maxScore") or 0
    return {
        "framework": FRAMEWORKS[framework]["name"],
        "overallScore": current,
        "maxScore": maximum,
        "compliancePercentage": percentage(current, maximum),
        "scoreDate": latest.get("createdDateTime"),
        "assessedAt": datetime.now(timezone.utc).isoformat(),
        "controlSummary": summary,
    }


def risk_level(max_score: float) -> str:
    if max_score > 7:
        return "high"
    if max_score > 4:
        return "medium"
    return "low"


RISK_ORDER = {"high": 0, "medium": 1, "low": 2}


async def control_rows(graph: GraphClient) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Latest Secure Score and one row per control profile with its implementation status."""
    scores = await graph.get("/security/secureScores", params={"$top": 1})
    profiles = await graph.get_all("/security/secureScoreControlProfiles")
    latest = (scores.get("value") or [{}])[0]
    score_by_control = {c.get("controlName"): c.get("score") or 0 for c in latest.get("controlScores", [])}

    rows = []
    for profile in profiles:
        maximum = profile.get("maxScore") or 0
        score = score_by_control.get(profile.get("id"), 0)
        if maximum and score >= maximum:
            status = "implemented"
        elif score > 0:
            status = "partiallyImplemented"
        else:
            status = "notImplemented"
        rows.append(
            {
                "controlId": profile.get("id"),
                "title": profile.get("title"),
                "category": profile.get("controlCategory"),
                "status": status,
                "riskLevel": risk_level(maximum),
                "score": score,
                "maxScore": maximum,
                "remediation": profile.get("remediation"),
            }
        )
    return latest, rows


def summarise(latest: Dict[str, Any], rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    current = latest.get("currentScore") or 0
    maximum = latest.get("maxScore") or 0
    return {
        "totalControls": len(rows),
        "implemented": sum(r["status"] == "implemented" for r in rows),
        "partiallyImplemented": sum(r["status"] == "partiallyImplemented" for r in rows),
        "notImplemented": sum(r["status"] == "notImplemented" for r in rows),
        "compliancePercentage": percentage(current, maximum),
        "scoreDate": latest.get("createdDateTime"),
    }


def find_gaps(rows: List[Dict[str, Any]], categories: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """Controls short of their maximum score, highest risk and largest shortfall first."""
    gaps = [r for r in rows if r["status"] != "implemented"]
    if categories:
        wanted = {c.lower() for c in categories}
        gaps = [g for g in gaps if (g["category"] or "").lower() in wanted]
    return sorted(gaps, key=lambda g: (RISK_ORDER[g["riskLevel"]], -(g["maxScore"] - g["score"])))


@handle_tool_errors
async def manage_gap_analysis(
    framework: Literal["hitrust", "iso27001", "soc2"],
    categories: Optional[List[str]] = None,
    include_recommendations: bool = True,
    ctx: Context = None,
) -> CallToolResult:
    """Find controls short of their Secure Score maximum and rank them by risk.

    categories narrows the analysis to Secure Score control categories
    (Identity, Data, Device, Apps, Infrastructure).
    """
    _, rows = await control_rows(get_graph(ctx))
    gaps = find_gaps(rows, categories)

    analysis = {
        "framework": FRAMEWORKS[framework]["name"],
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "summary": {
            "totalControls": len(rows),
            "compliantControls": sum(r["status"] == "implemented" for r in rows),
            "gapControls": sum(g["status"] == "notImplemented" for g in gaps),
            "partialControls": sum(g["status"] == "partiallyImplemented" for g in gaps),
            "priorityGaps": {level: sum(g["riskLevel"] == level for g in gaps) for level in RISK_ORDER},
        },
        "gaps": [{k: v for k, v in g.items() if k != "remediation"} for g in gaps],
    }
    if include_recommendations:
        analysis["recommendations"] = [
            {
                "controlId": g["controlId"],
                "title": g["title"],
                "priority": g["riskLevel"],
                "potentialGain": g["maxScore"] - g["score"],
                "remediation": g["remediation"],
            }
            for g in gaps
        ]
    return json_result(analysis)


@handle_tool_errors
async def manage_compliance_monitoring(
    action: Literal["get_status", "get_alerts", "get_trends"],
    framework: Optional[Literal["hitrust", "iso27001", "soc2"]] = None,
    days: int = 30,
    top: int = 50,
    ctx: Context = None,
) -> CallToolResult:
    """Watch compliance posture over time.

    get_status scores the tenant against a framework, get_alerts lists security
    alerts raised in the last `days` days, get_trends returns the daily Secure
    Score history over the same window.
    """
    if days < 1:
        raise InvalidParamsError("days must be >= 1")
    graph = get_graph(ctx)
    since = datetime.now(timezone.utc) - timedelta(days=days)

    match action:
        case "get_status":
            require(action, framework=framework)
            return json_result(await framework_status(graph, framework))
        case "get_alerts":
            params = {
                "$filter": f"createdDateTime ge {since.strftime('%Y-%m-%dT%H:%M:%SZ')}",
                "$top": top,
            }
            alerts = (await graph.get("/security/alerts_v2", params=params)).get("value", [])
            return json_result(
                {
                    "alerts": [
                        {
                            "id": a.get("id"),
                            "title": a.get("title"),
                            "severity": a.get("severity"),
                            "status": a.get("status"),
                            "category": a.get("category"),
                            "createdDateTime": a.get("createdDateTime"),
                        }
                        for a in alerts
                    ],
                    "totalCount": len(alerts),
                    "since": since.isoformat(),
                }
            )
        case "get_trends":
            history = (await graph.get("/security/secureScores", params={"$top": days})).get("value", [])
            points = sorted(
                (
                    {
                        "date": s.get("createdDateTime"),
                        "currentScore": s.get("currentScore") or 0,
                        "maxScore": s.get("maxScore") or 0,
                        "percentage": percentage(s.get("currentScore") or 0, s.get("maxScore") or 0),
                    }
                    for s in history
                ),
                key=lambda p: p["date"] or "",
            )
            change = points[-1]["currentScore"] - points[0]["currentScore"] if points else 0
            return json_result({"trends": points, "change": change, "period": {"days": days}})
        case _:
            raise unknown_action(action)


REPORT_COLUMNS = ["controlId", "title", "category", "status", "riskLevel", "score", "maxScore"]


def report_csv(rows: List[Dict[str, Any]]) -> str:
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=REPORT_COLUMNS, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return out.getvalue()


def report_html(report: Dict[str, Any], rows: List[Dict[str, Any]]) -> str:
    summary = report["summary"]
    sections = [
        Section(type="heading2", content="Summary"),
        Section(
            type="table",
            table_data=[["Measure", "Value"]] + [[key, str(value)] for key, value in summary.items()],
        ),
    ]
    if rows:
        sections += [
            Section(type="heading2", content="Controls"),
            Section(
                type="table",
                table_data=[REPORT_COLUMNS] + [[str(r.get(c, "")) for c in REPORT_COLUMNS] for r in rows],
            ),
        ]
    title = f"{report['framework']} {report['reportType'].replace('_', ' ')} report"
    return render_html(title, sections)


@handle_tool_errors
async def generate_audit_reports(
    framework: Literal["hitrust", "iso27001", "soc2"],
    report_type: Literal["full", "summary", "gaps", "executive", "control_matrix"] = "summary",
    output_format: Literal["json", "csv", "html"] = "json",
    risk_levels: Optional[List[Literal["low", "medium", "high"]]] = None,
    statuses: Optional[List[Literal["implemented", "partiallyImplemented", "notImplemented"]]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Audit report on tenant controls, built from Secure Score.

    full and control_matrix list every control, gaps lists the unimplemented
    ones, executive adds the five highest-risk gaps to the summary.
    """
    latest, rows = await control_rows(get_graph(ctx))
    if risk_levels:
        rows = [r for r in rows if r["riskLevel"] in risk_levels]
    if statuses:
        rows = [r for r in rows if r["status"] in statuses]

    now = datetime.now(timezone.utc)
    report: Dict[str, Any] = {
        "id": f"{framework}-{report_type}-{now.strftime('%Y%m%d%H%M%S')}",
        "framework": FRAMEWORKS[framework]["name"],
        "reportType": report_type,
        "generatedDate": now.isoformat(),
        "summary": summarise(latest, rows),
    }

    match report_type:
        case "full" | "control_matrix":
            listed = rows
        case "gaps":
            listed = find_gaps(rows)
        case "executive":
            listed = find_gaps(rows)[:5]
        case _:
            listed = []
    if listed:
        report["topRisks" if report_type == "executive" else "controls"] = listed

    match output_format:
        case "csv":
            return text_result(report_csv(listed or rows))
        case "html":
            return text_result(report_html(report, listed))
        case _:
            return json_result(report)


@handle_tool_errors
async def manage_compliance_frameworks(
    action: Literal["list", "status"],
    framework: Optional[Literal["hitrust", "iso27001", "soc2"]] = None,
    ctx: Context = None,
) -> CallToolResult:
    """List supported compliance frameworks or report tenant status against one."""
    match action:
        case "list":
            return json_result({"frameworks": [dict(f, status="available") for f in FRAMEWORKS.values()]})
        case "status":
            require(action, framework=framework)
            return json_result(await framework_status(get_graph(ctx), framework))
        case _:
            raise unknown_action(action)


TOOLS = [
    ToolSpec(
        manage_compliance_frameworks,
        "manage_compliance_frameworks",
        "Manage Compliance Frameworks",
        "List compliance frameworks (HITRUST, ISO 27001, SOC 2) and report tenant status from Microsoft Secure Score.",
        annotations("Manage Compliance Frameworks", read_only=True),
    ),
    ToolSpec(
        manage_gap_analysis,
        "manage_gap_analysis",
        "Manage Gap Analysis",
        "Rank controls short of their Secure Score maximum by risk, with remediation recommendations.",
        annotations("Manage Gap Analysis", read_only=True),
    ),
    ToolSpec(
        manage_compliance_monitoring,
        "manage_compliance_monitoring",
        "Manage Compliance Monitoring",
        "Monitor compliance status, recent security alerts and Secure Score trends.",
        annotations("Manage Compliance Monitoring", read_only=True),
    ),
    ToolSpec(
        generate_audit_reports,
        "generate_audit_reports",
        "Generate Audit Reports",
        "Generate full, summary, gap, executive or control-matrix audit reports as JSON, CSV or HTML.",
        annotations("Generate Audit Reports", read_only=True),
    ),
]
