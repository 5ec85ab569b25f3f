from m365_core.tools.intune import (
    manage_intune_macos_apps,
    manage_intune_macos_devices,
    manage_intune_windows_compliance,
    manage_intune_windows_devices,
    manage_intune_windows_policies,
)
from tests.conftest import FakeResponse, result_text, run

DEVICE_ID = "dev-1"


def test_macos_list_filters_operating_system(ctx, session):
    session.queue(FakeResponse(200, {"value": []}))

    result = run(manage_intune_macos_devices(action="list", filter="complianceState eq 'noncompliant'", ctx=ctx))

    assert session.calls[0]["params"] == {
        "$filter": "operatingSystem eq 'macOS' and complianceState eq 'noncompliant'"
    }
    assert result_text(result).startswith("macOS Device Management Result:")


def test_collect_logs_body(ctx, session):
    run(manage_intune_macos_devices(action="collect_logs", device_id=DEVICE_ID, ctx=ctx))

    call = session.calls[0]
    assert call["url"].endswith(f"/managedDevices/{DEVICE_ID}/createDeviceLogCollectionRequest")
    assert call["json"] == {"templateType": "predefined"}


def test_autopilot_reset_keeps_enrollment_data(ctx, session):
    run(manage_intune_windows_devices(action="autopilot_reset", device_id=DEVICE_ID, ctx=ctx))

    call = session.calls[0]
    assert call["url"].endswith(f"/managedDevices/{DEVICE_ID}/wipe")
    assert call["json"]["keepEnrollmentData"] is True


def test_device_action_requires_device_id(ctx, session):
    result = run(manage_intune_windows_devices(action="wipe", ctx=ctx))

    assert result.isError
    assert "device_id required for action 'wipe'" in result_text(result)
    assert session.calls == []


def test_create_compliance_policy_sets_platform_type(ctx, session):
    session.queue(FakeResponse(201, {"id": "pol-1"}))

    run(manage_intune_windows_policies(action="create", policy_type="Compliance", name="Baseline", ctx=ctx))

    body = session.calls[0]["json"]
    assert body["@odata.type"] == "#microsoft.graph.windows10CompliancePolicy"
    assert body["scheduledActionsForRule"][0]["ruleName"] == "PasswordRequired"


def test_assign_policy_to_groups(ctx, session):
    run(
        manage_intune_windows_policies(
            action="assign", policy_type="Configuration", policy_id="pol-1", assignment_groups=["g1", "g2"], ctx=ctx
        )
    )

    assignments = session.calls[0]["json"]["assignments"]
    assert [a["target"]["groupId"] for a in assignments] == ["g1", "g2"]


def test_unknown_app_type(ctx, session):
    result = run(manage_intune_macos_apps(action="list", app_type="win32LobApp", ctx=ctx))

    assert result.isError
    assert "Unknown macOS app type" in result_text(result)


def test_app_deploy_assignment_settings(ctx, session):
    run(manage_intune_macos_apps(action="deploy", app_id="app-1", assignment_groups=["g1"], install_intent="required", ctx=ctx))

    assignment = session.calls[0]["json"]["mobileAppAssignments"][0]
    assert assignment["intent"] == "required"
    assert assignment["settings"] == {"@odata.type": "#microsoft.graph.macOsLobAppAssignmentSettings"}


def test_update_policy_reports_each_policy(ctx, session):
    session.queue(
        FakeResponse(200, {"displayName": "Good", "scheduledActionsForRule": []}),
        FakeResponse(200, {}),
        FakeResponse(404, {"error": {"code": "NotFound", "message": "missing"}}),
    )

    result = run(manage_intune_windows_compliance(action="update_policy", policies=["p1", "p2"], ctx=ctx))

    assert not result.isError
    text = result_text(result)
    assert '"status": "updated"' in text
    assert '"status": "failed"' in text


def test_bitlocker_keys_filter_escapes_device_id(ctx, session):
    session.queue(FakeResponse(200, {"value": []}))

    run(manage_intune_windows_compliance(action="get_bitlocker_keys", device_id="dev' or 1 eq 1", ctx=ctx))

    assert session.calls[0]["url"].endswith("/informationProtection/bitlocker/recoveryKeys")
    assert session.calls[0]["params"] == {"$filter": "deviceId eq 'dev'' or 1 eq 1'"}
