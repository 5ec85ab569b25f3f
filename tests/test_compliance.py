import json

import pytest

from m365_core.tools.compliance import (
    generate_audit_reports,
    manage_compliance_monitoring,
    manage_gap_analysis,
    risk_level,
)
from tests.conftest import FakeResponse, result_text, run

LATEST_SCORE = {
    "value": [
        {
            "currentScore": 13,
            "maxScore": 27,
            "createdDateTime": "2026-10-18T00:00:00Z",
            "controlScores": [
                {"controlName": "MFARegistrationV2", "score": 5},
                {"controlName": "BlockLegacyAuthentication", "score": 8},
            ],
        }
    ]
}

PROFILES = {
    "value": [
        {"id": "AdminMFAV2", "title": "Require MFA for admins", "controlCategory": "Identity", "maxScore": 10, "remediation": "Turn on MFA"},
        {"id": "MFARegistrationV2", "title": "MFA registration", "controlCategory": "Identity", "maxScore": 5},
        {"id": "BlockLegacyAuthentication", "title": "Block legacy auth", "controlCategory": "Identity", "maxScore": 9},
        {"id": "SelfServicePasswordReset", "title": "Enable SSPR", "controlCategory": "Data", "maxScore": 3},
    ]
}


@pytest.fixture
def posture(session):
    session.queue(FakeResponse(200, LATEST_SCORE), FakeResponse(200, PROFILES))
    return session


@pytest.mark.parametrize("max_score, level", [(10, "high"), (7.5, "high"), (7, "medium"), (5, "medium"), (4, "low"), (0, "low")])
def test_risk_level(max_score, level):
    assert risk_level(max_score) == level


class TestGapAnalysis:
    def test_gaps_ranked_by_risk_then_shortfall(self, ctx, posture):
        result = run(manage_gap_analysis(framework="soc2", ctx=ctx))

        analysis = json.loads(result_text(result))
        assert [g["controlId"] for g in analysis["gaps"]] == [
            "AdminMFAV2",
            "BlockLegacyAuthentication",
            "SelfServicePasswordReset",
        ]
        assert analysis["summary"]["compliantControls"] == 1
        assert analysis["summary"]["gapControls"] == 2
        assert analysis["summary"]["partialControls"] == 1
        assert analysis["summary"]["priorityGaps"] == {"high": 2, "medium": 0, "low": 1}
        assert analysis["recommendations"][0] == {
            "controlId": "AdminMFAV2",
            "title": "Require MFA for admins",
            "priority": "high",
            "potentialGain": 10,
            "remediation": "Turn on MFA",
        }

    def test_category_filter_and_no_recommendations(self, ctx, posture):
        result = run(
            manage_gap_analysis(framework="iso27001", categories=["data"], include_recommendations=False, ctx=ctx)
        )

        analysis = json.loads(result_text(result))
        assert [g["controlId"] for g in analysis["gaps"]] == ["SelfServicePasswordReset"]
        assert "recommendations" not in analysis


class TestMonitoring:
    def test_alerts_since_window(self, ctx, session):
        session.queue(FakeResponse(200, {"value": [{"id": "a1", "title": "Impossible travel", "severity": "high"}]}))

        result = run(manage_compliance_monitoring(action="get_alerts", days=7, top=10, ctx=ctx))

        call = session.calls[0]
        assert call["url"].endswith("/security/alerts_v2")
        assert call["params"]["$top"] == 10
        assert call["params"]["$filter"].startswith("createdDateTime ge ")
        assert call["params"]["$filter"].endswith("Z")
        payload = json.loads(result_text(result))
        assert payload["totalCount"] == 1
        assert payload["alerts"][0]["title"] == "Impossible travel"

    def test_trends_sorted_oldest_first(self, ctx, session):
        session.queue(
            FakeResponse(
                200,
                {
                    "value": [
                        {"createdDateTime": "2026-10-18T00:00:00Z", "currentScore": 40, "maxScore": 80},
                        {"createdDateTime": "2026-10-16T00:00:00Z", "currentScore": 30, "maxScore": 80},
                    ]
                },
            )
        )

        result = run(manage_compliance_monitoring(action="get_trends", days=3, ctx=ctx))

        assert session.calls[0]["params"] == {"$top": 3}
        payload = json.loads(result_text(result))
        assert [p["currentScore"] for p in payload["trends"]] == [30, 40]
        assert payload["change"] == 10
        assert payload["trends"][1]["percentage"] == 50

    def test_status_requires_framework(self, ctx, session):
        result = run(manage_compliance_monitoring(action="get_status", ctx=ctx))

        assert result.isError
        assert "framework" in result_text(result)
        assert session.calls == []

    def test_days_must_be_positive(self, ctx, session):
        result = run(manage_compliance_monitoring(action="get_alerts", days=0, ctx=ctx))

        assert result.isError
        assert session.calls == []


class TestAuditReports:
    def test_executive_lists_top_risks(self, ctx, posture):
        result = run(generate_audit_reports(framework="soc2", report_type="executive", ctx=ctx))

        report = json.loads(result_text(result))
        assert report["framework"] == "SOC 2 Type II"
        assert report["id"].startswith("soc2-executive-")
        assert report["summary"]["totalControls"] == 4
        assert report["summary"]["compliancePercentage"] == 48
        assert report["topRisks"][0]["controlId"] == "AdminMFAV2"
        assert "controls" not in report

    def test_csv_control_matrix(self, ctx, posture):
        result = run(
            generate_audit_reports(framework="soc2", report_type="control_matrix", output_format="csv", ctx=ctx)
        )

        lines = result_text(result).splitlines()
        assert lines[0] == "controlId,title,category,status,riskLevel,score,maxScore"
        assert lines[1] == "AdminMFAV2,Require MFA for admins,Identity,notImplemented,high,0,10"
        assert len(lines) == 5

    def test_html_gaps_filtered_by_risk(self, ctx, posture):
        result = run(
            generate_audit_reports(
                framework="hitrust", report_type="gaps", output_format="html", risk_levels=["low"], ctx=ctx
            )
        )

        html = result_text(result)
        assert "HITRUST CSF gaps report" in html
        assert "SelfServicePasswordReset" in html
        assert "AdminMFAV2" not in html
