import inspect
import json

from mcp.server import FastMCP

from m365_core.resources import RESOURCES, _with_signature, make_reader, register_resources
from tests.conftest import FakeResponse, run


def spec_named(name):
    return next(spec for spec in RESOURCES if spec.name == name)


def test_template_signature_matches_uri():
    spec = spec_named("sharepoint_list")
    fn = _with_signature(make_reader(None, spec), spec)

    assert list(inspect.signature(fn).parameters) == ["site_id", "list_id"]
    assert fn.__name__ == "sharepoint_list"


def test_reader_formats_path(graph, session):
    session.queue(FakeResponse(200, {"id": "list-1", "columns": []}))
    spec = spec_named("sharepoint_list")

    text = run(make_reader(graph, spec)(site_id="site-1", list_id="list-1"))

    call = session.calls[0]
    assert call["url"] == "https://graph.microsoft.com/v1.0/sites/site-1/lists/list-1"
    assert call["params"] == {"$expand": "columns"}
    assert json.loads(text)["id"] == "list-1"


def test_static_reader(graph, session):
    session.queue(FakeResponse(200, {"value": [{"displayName": "Contoso"}]}))

    text = run(make_reader(graph, spec_named("tenant_organization"))())

    assert session.calls[0]["url"] == "https://graph.microsoft.com/v1.0/organization"
    assert "Contoso" in text


def test_registration(graph):
    app = FastMCP("test")
    register_resources(app, graph)

    static = run(app.list_resources())
    templates = run(app.list_resource_templates())

    assert {str(r.uri) for r in static} == {s.uri for s in RESOURCES if "{" not in s.uri}
    assert {t.uriTemplate for t in templates} == {s.uri for s in RESOURCES if "{" in s.uri}
