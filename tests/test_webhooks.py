"""End-to-end tests for the HTTP surface: status mapping, secrets, request logs."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import create_app


def _read_log(settings, name):
    path = f"{settings.LOG_DIR}/{name}-log.jsonl"
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


@pytest.fixture
def ghl_ok(make_remote):
    return make_remote(lambda r: httpx.Response(200, json={"contact": {"id": "c-9"}}))


def _client(settings, remote=None):
    return TestClient(create_app(settings, transport=remote.transport if remote else None))


# =============================================================================
# Misc endpoints
# =============================================================================


class TestMiscEndpoints:
    def test_root_and_health(self, settings):
        client = _client(settings)
        assert client.get("/").text == "Webhook server running."
        assert client.get("/healthz").text == "ok"

    def test_env_test_reports_loaded_and_missing(self, settings):
        body = _client(settings).get("/env-test").json()
        assert body["account_a"] == "Loaded"
        assert body["account_c"] == "Missing"
        assert body["hubspot"] == "Loaded"

    def test_metrics_exposed(self, settings):
        resp = _client(settings).get("/metrics/")
        assert resp.status_code == 200
        assert "relay_webhooks_total" in resp.text


# =============================================================================
# GHL routes
# =============================================================================


class TestGhlWebhook:
    def test_success(self, settings, ghl_ok):
        resp = _client(settings, ghl_ok).post(
            "/webhook", json={"contact": {"email": "a@b.co", "first_name": "Ann"}, "tags": "lead"}
        )

        assert resp.status_code == 200
        assert resp.text == "Sent to Account A"
        assert ghl_ok.json_bodies() == [
            {"email": "a@b.co", "firstName": "Ann", "tags": ["From Account A", "lead"]}
        ]

    def test_routes_map_to_their_accounts(self, settings, ghl_ok):
        client = _client(settings, ghl_ok)
        assert client.post("/webhook2", json={"phone": "555"}).text == "Sent to Account B"
        assert ghl_ok.requests[-1].headers["Authorization"] == "Bearer tok-b"

    def test_missing_email_and_phone_is_400_without_outbound_call(self, settings, ghl_ok):
        resp = _client(settings, ghl_ok).post("/webhook", json={"firstName": "Ann", "contact": {"email": " "}})

        assert resp.status_code == 400
        assert resp.text == "Missing email or phone"
        assert ghl_ok.requests == []

    def test_missing_credential_is_500_without_outbound_call(self, settings, ghl_ok):
        resp = _client(settings, ghl_ok).post("/webhook3", json={"email": "a@b.co"})

        assert resp.status_code == 500
        assert resp.json() == {"status": "error", "message": "ACCOUNT_C_API not configured"}
        assert ghl_ok.requests == []

    def test_remote_failure_is_500_with_detail(self, settings, make_remote):
        remote = make_remote(lambda r: httpx.Response(400, json={"msg": "Contact already exists"}))
        resp = _client(settings, remote).post("/webhook", json={"email": "a@b.co"})

        assert resp.status_code == 500
        assert resp.json() == {
            "status": "error",
            "message": "Error sending to Account A",
            "error": {"msg": "Contact already exists"},
        }

    def test_versioned_account_tags_coaching_fields(self, settings, ghl_ok):
        resp = _client(settings, ghl_ok).post(
            "/webhook4", json={"email": "a@b.co", "Coaching Completed": "Coaching Completed"}
        )
        assert resp.status_code == 200
        body = ghl_ok.json_bodies()[0]
        assert body["tags"] == ["From Account D", "Coaching Completed"]
        assert body["locationId"] == "loc-123"

    def test_invalid_json_is_400(self, settings, ghl_ok):
        resp = _client(settings, ghl_ok).post(
            "/webhook", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert ghl_ok.requests == []

    def test_non_object_body_is_400(self, settings, ghl_ok):
        resp = _client(settings, ghl_ok).post("/webhook", json=["a@b.co"])
        assert resp.status_code == 400

    def test_inbound_payload_is_logged(self, settings, ghl_ok):
        payload = {"email": "a@b.co", "custom": {"x": 1}}
        _client(settings, ghl_ok).post("/webhook", json=payload)

        [entry] = _read_log(settings, "account_a")
        assert entry["payload"] == payload
        assert "T" in entry["timestamp"]

    def test_rejected_payload_is_still_logged(self, settings, ghl_ok):
        _client(settings, ghl_ok).post("/webhook", json={"firstName": "NoContact"})
        assert _read_log(settings, "account_a")[0]["payload"] == {"firstName": "NoContact"}

    def test_log_failure_does_not_change_response(self, settings, ghl_ok, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("a file where the log dir should be")
        cfg = settings.model_copy(update={"LOG_DIR": str(blocker)})

        resp = _client(cfg, ghl_ok).post("/webhook", json={"email": "a@b.co"})
        assert resp.status_code == 200

    def test_logged_payload_normalizes_like_the_original(self, settings, ghl_ok):
        from relay.normalize import normalize_for_crm

        payload = {"contact": {"email": "a@b.co", "last_name": "Lee"}, "tags": "x, y"}
        _client(settings, ghl_ok).post("/webhook", json=payload)

        logged = _read_log(settings, "account_a")[0]["payload"]
        sent = ghl_ok.json_bodies()[0]
        assert normalize_for_crm(logged, ["From Account A"]) == sent
        assert normalize_for_crm(sent, ["From Account A"]) == sent


# =============================================================================
# Shared secret
# =============================================================================


class TestSharedSecret:
    @pytest.fixture
    def secured(self, settings):
        return settings.model_copy(update={"WEBHOOK_SECRET": "s3cret"})

    def test_missing_secret_is_401_before_anything_else(self, secured, ghl_ok):
        resp = _client(secured, ghl_ok).post("/webhook", json={"email": "a@b.co"})
        assert resp.status_code == 401
        assert ghl_ok.requests == []

    def test_wrong_secret_is_401(self, secured, ghl_ok):
        resp = _client(secured, ghl_ok).post(
            "/webhook", json={"email": "a@b.co"}, headers={"X-Webhook-Secret": "nope"}
        )
        assert resp.status_code == 401

    def test_header_secret(self, secured, ghl_ok):
        resp = _client(secured, ghl_ok).post(
            "/webhook", json={"email": "a@b.co"}, headers={"X-Webhook-Secret": "s3cret"}
        )
        assert resp.status_code == 200

    def test_query_secret(self, secured, ghl_ok):
        resp = _client(secured, ghl_ok).post("/webhook?secret=s3cret", json={"email": "a@b.co"})
        assert resp.status_code == 200

    def test_body_secret_is_stripped_before_logging(self, secured, ghl_ok):
        resp = _client(secured, ghl_ok).post("/webhook", json={"email": "a@b.co", "secret": "s3cret"})

        assert resp.status_code == 200
        assert _read_log(secured, "account_a")[0]["payload"] == {"email": "a@b.co"}
        assert "secret" not in ghl_ok.json_bodies()[0]

    def test_unauthorized_request_is_not_logged(self, secured, ghl_ok):
        import os

        _client(secured, ghl_ok).post("/webhook", json={"email": "a@b.co"})
        assert not os.path.exists(f"{secured.LOG_DIR}/account_a-log.jsonl")


# =============================================================================
# HubSpot routes
# =============================================================================


def _hubspot_remote(make_remote, existing=None):
    def responder(request):
        if request.url.path.endswith("/search"):
            return httpx.Response(200, json={"results": [existing] if existing else []})
        if request.url.path.endswith("/batch/upsert"):
            inputs = json.loads(request.content)["inputs"]
            return httpx.Response(
                200,
                json={"results": [{"id": str(i), "new": True, "properties": {"email": x["id"]}} for i, x in enumerate(inputs)]},
            )
        if request.method == "PATCH":
            return httpx.Response(200, json={"id": existing["id"]})
        return httpx.Response(201, json={"id": "hs-1"})

    return make_remote(responder)


class TestHubSpotWebhook:
    def test_created(self, settings, make_remote):
        remote = _hubspot_remote(make_remote)
        resp = _client(settings, remote).post(
            "/webhook/ghl-to-hubspot",
            json={"email": "a@b.co", "firstName": "Ann", "tags": "x", "my_custom_field": "gold"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["result"] == "created"
        assert body["id"] == "hs-1"
        assert remote.json_bodies()[1] == {
            "properties": {
                "email": "a@b.co",
                "firstname": "Ann",
                "lastname": "",
                "phone": "",
                "source": "",
                "my_custom_field": "gold",
            }
        }

    def test_updated(self, settings, make_remote):
        remote = _hubspot_remote(make_remote, existing={"id": "77", "properties": {}})
        resp = _client(settings, remote).post("/webhook/ghl-to-hubspot", json={"email": "a@b.co"})
        assert resp.json()["result"] == "updated"
        assert remote.requests[1].method == "PATCH"

    def test_missing_email_is_400(self, settings, make_remote):
        remote = _hubspot_remote(make_remote)
        resp = _client(settings, remote).post(
            "/webhook/ghl-to-hubspot", json={"phone": "555", "contact": {"email": "nested@b.co"}}
        )
        assert resp.status_code == 400
        assert resp.json() == {"status": "error", "message": "Missing required field: email"}
        assert remote.requests == []

    def test_second_profile_uses_nested_email_and_its_property_names(self, settings, make_remote):
        remote = _hubspot_remote(make_remote)
        resp = _client(settings, remote).post(
            "/webhook/ghl-to-hubspot-b",
            json={"contact": {"email": "nested@b.co"}, "my_custom_field": "gold"},
        )
        assert resp.status_code == 200
        props = remote.json_bodies()[1]["properties"]
        assert props["email"] == "nested@b.co"
        assert props["My_Custom_Field"] == "gold"
        assert remote.requests[0].headers["Authorization"] == "Bearer hs-b-token"

    def test_remote_failure_is_500(self, settings, make_remote):
        remote = make_remote(lambda r: httpx.Response(500, json={"message": "internal"}))
        resp = _client(settings, remote).post("/webhook/ghl-to-hubspot", json={"email": "a@b.co"})
        assert resp.status_code == 500
        assert resp.json() == {"status": "error", "error": {"message": "internal"}}

    def test_non_json_search_answer_is_500(self, settings, make_remote):
        remote = make_remote(lambda r: httpx.Response(200, text="<html>maintenance</html>"))
        resp = _client(settings, remote).post("/webhook/ghl-to-hubspot", json={"email": "a@b.co"})
        assert resp.status_code == 500
        assert resp.json() == {"status": "error", "error": "<html>maintenance</html>"}
        assert len(remote.requests) == 1

    def test_missing_token_is_500(self, settings, make_remote):
        remote = _hubspot_remote(make_remote)
        cfg = settings.model_copy(update={"HUBSPOT_ACCESS_TOKEN": None})
        resp = _client(cfg, remote).post("/webhook/ghl-to-hubspot", json={"email": "a@b.co"})
        assert resp.status_code == 500
        assert resp.json()["message"] == "HUBSPOT_ACCESS_TOKEN not configured"
        assert remote.requests == []


class TestHubSpotBatch:
    def test_batch_accepts_list_or_wrapper(self, settings, make_remote):
        remote = _hubspot_remote(make_remote)
        client = _client(settings, remote)
        contacts = [{"email": f"u{i}@b.co"} for i in range(3)]

        r1 = client.post("/webhook/ghl-to-hubspot/batch", json=contacts)
        r2 = client.post("/webhook/ghl-to-hubspot/batch", json={"contacts": contacts})

        for resp in (r1, r2):
            assert resp.status_code == 200
            assert resp.json()["sent"] == 3
            assert [r["status"] for r in resp.json()["results"]] == ["created"] * 3

    def test_batch_rejects_records_without_email(self, settings, make_remote):
        remote = _hubspot_remote(make_remote)
        resp = _client(settings, remote).post(
            "/webhook/ghl-to-hubspot/batch", json=[{"email": "a@b.co"}, {"phone": "555"}]
        )
        assert resp.status_code == 400
        assert resp.json()["invalid"] == [1]
        assert remote.requests == []

    def test_batch_rejects_empty(self, settings, make_remote):
        resp = _client(settings, _hubspot_remote(make_remote)).post("/webhook/ghl-to-hubspot/batch", json=[])
        assert resp.status_code == 400

    def test_batch_partial_failure_is_500(self, settings, make_remote):
        calls = {"n": 0}

        def responder(request):
            calls["n"] += 1
            if calls["n"] == 2:
                return httpx.Response(400, json={"message": "bad input"})
            inputs = json.loads(request.content)["inputs"]
            return httpx.Response(200, json={"results": [{"id": "1", "properties": {"email": x["id"]}} for x in inputs]})

        remote = make_remote(responder)
        contacts = [{"email": f"u{i}@b.co"} for i in range(250)]
        resp = _client(settings, remote).post("/webhook/ghl-to-hubspot/batch", json=contacts)

        assert resp.status_code == 500
        body = resp.json()
        assert body["sent"] == 100
        assert body["not_sent"] == 150
        assert len(body["results"]) == 200
        assert len(remote.requests) == 2

    def test_batch_rejected_record_is_500(self, settings, make_remote):
        def responder(request):
            inputs = json.loads(request.content)["inputs"]
            return httpx.Response(
                207,
                json={
                    "results": [{"id": "1", "properties": {"email": inputs[0]["id"]}}],
                    "errors": [{"message": "Property values were not valid", "context": {"ids": [inputs[1]["id"]]}}],
                },
            )

        remote = make_remote(responder)
        resp = _client(settings, remote).post(
            "/webhook/ghl-to-hubspot/batch", json=[{"email": "a@b.co"}, {"email": "bad@b.co"}]
        )

        assert resp.status_code == 500
        body = resp.json()
        assert body["sent"] == 1
        assert body["not_sent"] == 1
        assert body["results"][1]["error"]["message"] == "Property values were not valid"
