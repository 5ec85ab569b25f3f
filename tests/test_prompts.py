import re

import pytest

from m365_core.prompts import PROMPTS, intune_policy_wizard, security_assessment, user_access_review
from m365_core.tools import all_tools
from m365_mcp_server import create_server
from tests.conftest import run


def test_every_prompt_is_registered(settings, graph):
    app = create_server(settings, graph=graph)

    prompts = run(app.list_prompts())

    assert {p.name for p in prompts} == {spec.name for spec in PROMPTS}
    wizard = next(p for p in prompts if p.name == "intune_policy_wizard")
    assert {a.name for a in wizard.arguments} == {"policy_goal", "platform", "security_level"}
    assert not any(a.required for a in wizard.arguments)


def test_rendered_prompt_carries_arguments(settings, graph):
    app = create_server(settings, graph=graph)

    result = run(app.get_prompt("compliance_review", {"framework": "iso27001", "scope": "identity"}))

    text = result.messages[0].content.text
    assert "Compliance review: iso27001" in text
    assert "scope: identity" in text


@pytest.mark.parametrize("spec", PROMPTS, ids=lambda s: s.name)
def test_prompts_only_name_registered_tools(spec):
    tool_names = {t.name for t in all_tools()}

    named = set(re.findall(r"`((?:manage|search|generate|call)_[a-z0-9_]+)`", spec.fn()))

    assert named
    assert named <= tool_names


def test_defaults_render_without_arguments():
    assert "every area below" in security_assessment()
    assert "all users" in user_access_review()


def test_user_access_review_targets_one_user():
    text = user_access_review(user_id="alice@contoso.com")

    assert "user `alice@contoso.com`" in text
    assert "m365://users/{user_id}/memberOf" in text


def test_wizard_picks_platform_tool():
    assert "manage_intune_macos_policies" in intune_policy_wizard(platform="macos")
    assert "manage_intune_macos_policies" not in intune_policy_wizard(platform="windows")
