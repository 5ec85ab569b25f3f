import json

from m365_core.tools.advanced import (
    BatchRequest,
    delta_path,
    delta_result,
    execute_delta_query,
    execute_graph_batch,
    execute_graph_search,
    link_token,
    manage_graph_subscriptions,
)
from tests.conftest import FakeResponse, result_text, run


def make_requests(count):
    return [BatchRequest(method="GET", url=f"/users?$top={i}") for i in range(count)]


class TestBatch:
    def test_empty_batch_is_rejected(self, ctx, session):
        result = run(execute_graph_batch(requests=[], ctx=ctx))

        assert result.isError
        assert "invalid_params" in result_text(result)
        assert session.calls == []

    def test_more_than_twenty_requests_is_rejected(self, ctx, session):
        result = run(execute_graph_batch(requests=make_requests(21), ctx=ctx))

        assert result.isError
        assert "Maximum 20 requests" in result_text(result)
        assert session.calls == []

    def test_batch_payload_and_summary(self, ctx, session):
        session.queue(FakeResponse(200, {"responses": [{"id": "0", "status": 200}, {"id": "1", "status": 404}]}))
        requests = [
            BatchRequest(method="get", url="/me"),
            BatchRequest(id="new", method="POST", url="/groups", body={"displayName": "x"}),
        ]

        result = run(execute_graph_batch(requests=requests, ctx=ctx))

        call = session.calls[0]
        assert call["url"] == "https://graph.microsoft.com/v1.0/$batch"
        sent = call["json"]["requests"]
        assert sent[0] == {"id": "0", "method": "GET", "url": "/me", "headers": {}}
        assert sent[1]["id"] == "new"
        assert sent[1]["headers"] == {"Content-Type": "application/json"}
        summary = json.loads(result_text(result))
        assert summary["totalRequests"] == 2
        assert summary["successCount"] == 1
        assert summary["errorCount"] == 1


class TestDelta:
    def test_delta_path(self):
        assert delta_path("/users") == "/users/delta"
        assert delta_path("/users/delta") == "/users/delta"

    def test_link_token_is_decoded(self):
        link = "https://graph.microsoft.com/v1.0/users/delta?$deltatoken=abc%3D%3D"
        assert link_token(link, "$deltatoken") == "abc=="
        assert link_token(None, "$deltatoken") == ""

    def test_final_page_has_no_more_changes(self):
        result = delta_result(
            {"value": [{"id": "1"}], "@odata.deltaLink": "https://graph.microsoft.com/v1.0/users/delta?$deltatoken=t1"}
        )

        assert result["hasMoreChanges"] is False
        assert result["deltaToken"] == "t1"
        assert result["changeCount"] == 1

    def test_intermediate_page_has_more_changes(self):
        result = delta_result(
            {"value": [], "@odata.nextLink": "https://graph.microsoft.com/v1.0/users/delta?$skiptoken=s1"}
        )

        assert result["hasMoreChanges"] is True
        assert result["skipToken"] == "s1"
        assert result["deltaToken"] == ""

    def test_query_sends_delta_token(self, ctx, session):
        session.queue(FakeResponse(200, {"value": [], "@odata.deltaLink": "https://x/users/delta?$deltatoken=t2"}))

        result = run(execute_delta_query(resource="/users", delta_token="t1", select=["id", "displayName"], ctx=ctx))

        call = session.calls[0]
        assert call["url"] == "https://graph.microsoft.com/v1.0/users/delta"
        assert call["params"] == {"$deltatoken": "t1", "$select": "id,displayName"}
        assert json.loads(result_text(result))["deltaToken"] == "t2"


class TestSubscriptions:
    def test_create_defaults(self, ctx, session):
        session.queue(FakeResponse(201, {"id": "sub-1", "resource": "/users"}))

        result = run(
            manage_graph_subscriptions(
                action="create",
                resource="/users",
                change_types=["created", "updated"],
                notification_url="https://hooks.contoso.com/graph",
                client_state="secret",
                ctx=ctx,
            )
        )

        body = session.calls[0]["json"]
        assert body["changeType"] == "created,updated"
        assert body["latestSupportedTlsVersion"] == "v1_2"
        assert body["clientState"] == "secret"
        assert body["expirationDateTime"].endswith("Z")
        assert json.loads(result_text(result))["id"] == "sub-1"

    def test_create_requires_notification_url(self, ctx, session):
        result = run(manage_graph_subscriptions(action="create", resource="/users", change_types=["created"], ctx=ctx))

        assert result.isError
        assert "notification_url" in result_text(result)
        assert session.calls == []


    def test_validate_notification_makes_no_graph_call(self, ctx, session, msal_app):
        notification = {
            "value": [
                {
                    "subscriptionId": "sub-1",
                    "changeType": "updated",
                    "resource": "users/abc",
                    "clientState": "secret",
                    "tenantId": "tenant",
                }
            ]
        }

        result = run(
            manage_graph_subscriptions(
                action="validate_notification", notification=notification, client_state="secret", ctx=ctx
            )
        )

        assert not result.isError
        body = json.loads(result_text(result))
        assert body["valid"] is True
        assert body["notifications"][0]["subscriptionId"] == "sub-1"
        assert "processedAt" in body["notifications"][0]
        assert session.calls == []
        assert msal_app.calls == []

    def test_validate_notification_rejects_wrong_client_state(self, ctx, session):
        notification = {"subscriptionId": "sub-1", "changeType": "created", "resource": "users", "clientState": "other"}

        result = run(
            manage_graph_subscriptions(
                action="validate_notification", notification=notification, client_state="secret", ctx=ctx
            )
        )

        assert result.isError
        assert "clientState" in result_text(result)
        assert session.calls == []

    def test_validate_notification_requires_payload(self, ctx, session):
        result = run(manage_graph_subscriptions(action="validate_notification", ctx=ctx))

        assert result.isError
        assert "notification required" in result_text(result)


class TestSearch:

    def test_no_hits(self, ctx, session):
        session.queue(FakeResponse(200, {"value": [{"hitsContainers": [{"hits": [], "total": 0}]}]}))

        result = run(execute_graph_search(query_string="budget", entity_types=["driveItem"], ctx=ctx))

        assert result_text(result) == "No results found for 'budget'"

    def test_hits(self, ctx, session):
        session.queue(
            FakeResponse(200, {"value": [{"hitsContainers": [{"hits": [{"hitId": "1"}], "total": 1, "moreResultsAvailable": False}]}]})
        )

        result = run(execute_graph_search(query_string="budget", entity_types=["driveItem"], size=10, ctx=ctx))

        request = session.calls[0]["json"]["requests"][0]
        assert request["query"] == {"queryString": "budget"}
        assert request["size"] == 10
        assert json.loads(result_text(result))["totalCount"] == 1
