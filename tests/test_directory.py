import json

from m365_core.tools.directory import (
    OffboardingOptions,
    SecurityGroupSettings,
    mail_nickname,
    manage_distribution_lists,
    manage_m365_groups,
    manage_offboarding,
    manage_security_groups,
)
from tests.conftest import FakeResponse, result_text, run

GROUP_ID = "0f2c5a1e-7b3d-4c8e-9f10-112233445566"
USER_ID = "8d3f1f6a-2c4b-4f0e-9a51-6b1f2e3d4c5b"


def test_mail_nickname():
    assert mail_nickname("Sales Team") == "salesteam"
    assert mail_nickname("R&D (EMEA)") == "r&demea"
    assert mail_nickname("Sales+Ops Team") == "sales+opsteam"
    assert mail_nickname("Finance; Legal, <HQ>") == "financelegalhq"
    assert mail_nickname("Caf\u00e9 \"Bar\" @ [Main]") == "cafbarmain"


class TestDistributionLists:
    def test_create_without_display_name_is_rejected_before_any_call(self, ctx, session):
        result = run(manage_distribution_lists(action="create", email_address="sales@contoso.com", ctx=ctx))

        assert result.isError
        assert "invalid_params (-32602)" in result_text(result)
        assert "display_name" in result_text(result)
        assert result.structuredContent["error"]["code"] == -32602
        assert session.calls == []

    def test_create_uses_email_local_part_as_nickname(self, ctx, session):
        session.queue(FakeResponse(201, {"id": GROUP_ID, "displayName": "Sales"}))

        result = run(
            manage_distribution_lists(
                action="create", display_name="Sales", email_address="sales-team@contoso.com", ctx=ctx
            )
        )

        assert not result.isError
        body = session.calls[0]["json"]
        assert body["mailNickname"] == "sales-team"
        assert body["mailEnabled"] is True
        assert json.loads(result_text(result))["id"] == GROUP_ID

    def test_add_members_by_email(self, ctx, session):
        session.queue(
            FakeResponse(200, {"value": [{"id": GROUP_ID}]}),
            FakeResponse(200, {"id": USER_ID}),
            FakeResponse(204),
        )

        result = run(
            manage_distribution_lists(
                action="add_members", list_id="sales@contoso.com", members=["jane@contoso.com"], ctx=ctx
            )
        )

        assert "Successfully added 1 member(s)" in result_text(result)
        ref_call = session.calls[2]
        assert ref_call["url"].endswith(f"/groups/{GROUP_ID}/members/$ref")
        assert ref_call["json"] == {"@odata.id": f"https://graph.microsoft.com/v1.0/directoryObjects/{USER_ID}"}

    def test_group_email_with_quote_is_escaped_in_filter(self, ctx, session):
        session.queue(FakeResponse(200, {"value": [{"id": GROUP_ID}]}), FakeResponse(204))

        result = run(manage_distribution_lists(action="delete", list_id="o'brien@contoso.com", ctx=ctx))

        assert not result.isError
        assert session.calls[0]["params"]["$filter"] == "mail eq 'o''brien@contoso.com'"
        assert session.calls[1]["url"].endswith(f"/groups/{GROUP_ID}")

    def test_unknown_group_email(self, ctx, session):
        session.queue(FakeResponse(200, {"value": []}))

        result = run(manage_distribution_lists(action="delete", list_id="nobody@contoso.com", ctx=ctx))

        assert result.isError
        assert "upstream_error (-32001)" in result_text(result)
        assert "This usually means" in result_text(result)


class TestSecurityGroups:
    def test_create_issues_exactly_one_post(self, ctx, session):
        session.queue(FakeResponse(201, {"id": GROUP_ID, "displayName": "Sales Team"}))

        result = run(
            manage_security_groups(
                action="create",
                display_name="Sales Team",
                description="Sales staff",
                settings=SecurityGroupSettings(mail_enabled=False),
                ctx=ctx,
            )
        )

        assert not result.isError
        assert len(session.calls) == 1
        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://graph.microsoft.com/v1.0/groups"
        assert call["json"] == {
            "displayName": "Sales Team",
            "mailEnabled": False,
            "securityEnabled": True,
            "mailNickname": "salesteam",
            "groupTypes": [],
            "description": "Sales staff",
        }

    def test_create_with_defaults_is_a_single_security_group_post(self, ctx, session):
        session.queue(FakeResponse(201, {"id": GROUP_ID, "displayName": "Sales Team"}))

        result = run(manage_security_groups(action="create", display_name="Sales Team", ctx=ctx))

        assert not result.isError
        assert len(session.calls) == 1
        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://graph.microsoft.com/v1.0/groups"
        assert call["json"]["mailEnabled"] is False
        assert call["json"]["securityEnabled"] is True
        assert call["json"]["mailNickname"] == "salesteam"

    def test_create_binds_members(self, ctx, session):
        session.queue(FakeResponse(201, {"id": GROUP_ID}))

        run(manage_security_groups(action="create", display_name="Ops", members=[USER_ID], ctx=ctx))

        assert session.calls[0]["json"]["members@odata.bind"] == [
            f"https://graph.microsoft.com/v1.0/directoryObjects/{USER_ID}"
        ]

    def test_update_without_changes_is_rejected(self, ctx, session):
        result = run(manage_security_groups(action="update", group_id=GROUP_ID, ctx=ctx))

        assert result.isError
        assert "changes required" in result_text(result)
        assert session.calls == []

    def test_graph_failure_becomes_error_result(self, ctx, session):
        session.queue(FakeResponse(403, {"error": {"code": "Authorization_RequestDenied", "message": "Insufficient privileges"}}))

        result = run(manage_security_groups(action="delete", group_id=GROUP_ID, ctx=ctx))

        assert result.isError
        error = result.structuredContent["error"]
        assert error["kind"] == "upstream_error"
        assert error["data"]["status"] == 403
        assert "Check API permissions" in result_text(result)


class TestM365Groups:
    def test_create_defaults_to_private(self, ctx, session):
        session.queue(FakeResponse(201, {"id": GROUP_ID}))

        run(manage_m365_groups(action="create", display_name="Project X", ctx=ctx))

        body = session.calls[0]["json"]
        assert body["groupTypes"] == ["Unified"]
        assert body["visibility"] == "Private"
        assert len(session.calls) == 1


class TestOffboarding:
    def test_start_blocks_sign_in_and_revokes_sessions(self, ctx, session):
        result = run(manage_offboarding(action="start", user_id=USER_ID, ctx=ctx))

        assert [c["method"] for c in session.calls] == ["PATCH", "POST"]
        assert session.calls[0]["json"] == {"accountEnabled": False}
        assert session.calls[1]["url"].endswith("/revokeSignInSessions")
        assert "Sign-in blocked" in result_text(result)

    def test_convert_to_shared_removes_licenses(self, ctx, session):
        session.queue(
            FakeResponse(200, {"id": USER_ID, "userPrincipalName": "jane@contoso.com", "assignedLicenses": [{"skuId": "sku-1"}]}),
            FakeResponse(200, {}),
        )

        result = run(
            manage_offboarding(
                action="complete", user_id=USER_ID, options=OffboardingOptions(convert_to_shared=True), ctx=ctx
            )
        )

        assert session.calls[1]["json"] == {"addLicenses": [], "removeLicenses": ["sku-1"]}
        assert "Set-Mailbox -Identity 'jane@contoso.com' -Type Shared" in result_text(result)

    def test_complete_retains_account_by_default(self, ctx, session):
        result = run(manage_offboarding(action="complete", user_id=USER_ID, ctx=ctx))

        assert session.calls == []
        assert "account retained" in result_text(result)
