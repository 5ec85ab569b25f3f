from m365_core.webhooks import process_notification, validate_notification

NOTIFICATION = {
    "subscriptionId": "sub-1",
    "changeType": "updated",
    "resource": "Users/abc",
    "clientState": "secret",
    "tenantId": "tenant",
}


def test_envelope_is_valid():
    assert validate_notification({"value": [NOTIFICATION]})


def test_single_notification_is_valid():
    assert validate_notification(NOTIFICATION, client_state="secret")


def test_client_state_mismatch():
    assert not validate_notification({"value": [NOTIFICATION]}, client_state="other")


def test_missing_fields_and_garbage():
    assert not validate_notification({"value": [{"subscriptionId": "sub-1"}]})
    assert not validate_notification({"value": []})
    assert not validate_notification("not a dict")
    assert not validate_notification({"value": ["x"]})


def test_process_notification():
    processed = process_notification(NOTIFICATION)

    assert processed["subscriptionId"] == "sub-1"
    assert processed["resourceData"] is None
    assert "processedAt" in processed
