import io
import json

import pytest
from docx import Document
from fastapi.testclient import TestClient

from abm_email_local.api import build_config
from abm_email_local.server import create_app
from abm_email_local.utils.export import DOCX_MEDIA_TYPE
from abm_email_local.utils.llm_client import UpstreamServiceError
from abm_email_local.utils.storage import InMemoryEmailStore

from conftest import BrokenStream, connection_error, make_sequence


@pytest.fixture
def store():
    return InMemoryEmailStore()


@pytest.fixture
def client(config, llm_client, store):
    return TestClient(create_app(config, llm_client=llm_client, store=store))


def generate_body(**overrides):
    body = {
        "account": {"index": 7, "company_name": "Riverside Health", "tier": "Tier 1", "ehr_system": "Epic"},
        "contact": {
            "contact_id": "RIV-A",
            "full_name": "Jane Park",
            "first_name": "Jane",
            "title": "Chief Learning Officer",
            "email": "jane.park@riverside.example",
        },
    }
    body.update(overrides)
    return body


def save_body(**overrides):
    body = {
        "accountIndex": 7,
        "accountName": "Riverside Health",
        "contactId": "RIV-A",
        "contactName": "Jane Park",
        "contactTitle": "Chief Learning Officer",
        "emails": make_sequence(),
    }
    body.update(overrides)
    return body


def ndjson(response):
    return [json.loads(line) for line in response.text.splitlines() if line]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestAccountsAndContacts:
    def test_list_accounts(self, client):
        accounts = client.get("/api/accounts").json()

        assert [a["index"] for a in accounts] == [7, 12]
        assert "timing_signals" not in accounts[0]

    def test_get_account(self, client):
        assert client.get("/api/accounts/7").json()["timing_signals"] == "Epic go-live planned for Q3"

    @pytest.mark.parametrize("index", ["0", "-3", "abc"])
    def test_invalid_account_index(self, client, index):
        response = client.get(f"/api/accounts/{index}")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid account index"}

    def test_unknown_account(self, client):
        response = client.get("/api/accounts/99")

        assert response.status_code == 404
        assert response.json() == {"error": "Account not found"}

    def test_contacts(self, client):
        contacts = client.get("/api/contacts/7").json()

        assert [c["contact_id"] for c in contacts] == ["RIV-B", "RIV-C", "RIV-A", "RIV-D", "RIV-E"]
        assert "department" not in contacts[2]

    def test_full_contacts(self, client):
        contacts = client.get("/api/contacts/7", params={"full": "true"}).json()

        assert contacts[2]["department"] == "Learning"

    def test_contacts_for_account_without_file(self, client):
        assert client.get("/api/contacts/12").json() == []

    def test_ranked_contacts(self, client):
        data = client.get("/api/contacts/7/ranked").json()

        assert data["autoSelected"] == ["RIV-B", "RIV-A", "RIV-E"]
        labels = [c["tier_label"] for c in data["contacts"]]
        assert labels[:2] == ["CLO", "CIO"]
        assert labels[-1] == "Excluded"


class TestGenerateEmails:
    def test_streams_raw_model_text(self, client, fake_openai):
        response = client.post("/api/generate-emails", json=generate_body())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == json.dumps(make_sequence())
        assert fake_openai.calls[0]["stream"] is True

    def test_request_config_is_applied(self, client, fake_openai):
        client.post("/api/generate-emails", json=generate_body(config={"model": "gpt-custom", "max_words": 250}))

        assert fake_openai.calls[0]["model"] == "gpt-custom"
        assert "150-250 words" in fake_openai.calls[0]["messages"][1]["content"]

    def test_invalid_json(self, client):
        response = client.post(
            "/api/generate-emails", content="{not json", headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON in request body"}

    def test_invalid_body(self, client, fake_openai):
        body = generate_body()
        body["account"]["index"] = 1000

        response = client.post("/api/generate-emails", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"
        assert "account.index" in response.json()["details"]["field_errors"]
        assert fake_openai.calls == []

    def test_upstream_failure(self, client, fake_openai):
        fake_openai.queue(connection_error())

        response = client.post("/api/generate-emails", json=generate_body())

        assert response.status_code == 500
        assert response.json()["error"] == "Email generation failed"
        assert "Connection error" in response.json()["message"]

    def test_upstream_failure_mid_stream_aborts_the_response(self, client, fake_openai):
        fake_openai.queue(BrokenStream('[{"variant_id": "007-', connection_error()))

        with pytest.raises(Exception) as excinfo:
            client.post("/api/generate-emails", json=generate_body())

        error = excinfo.value
        # Older anyio/starlette releases wrap task errors in an exception group
        while hasattr(error, "exceptions"):
            error = error.exceptions[0]
        assert isinstance(error, UpstreamServiceError)
        assert "stream interrupted" in str(error)

    def test_api_key_failure(self, client, fake_openai):
        fake_openai.queue(UpstreamServiceError("Incorrect API key provided", status_code=401))

        response = client.post("/api/generate-emails", json=generate_body())

        assert response.status_code == 500
        assert response.json() == {"error": "API key configuration error"}

    def test_missing_api_key(self, data_dir):
        config = build_config({"data_dir": str(data_dir), "storage_backend": "memory"})
        client = TestClient(create_app(config))

        response = client.post("/api/generate-emails", json=generate_body())

        assert response.status_code == 500
        assert response.json() == {"error": "API key configuration error"}


class TestGenerateBatch:
    def test_streams_status_events_and_summary(self, client, fake_openai):
        fake_openai.queue(json.dumps(make_sequence()), "not json")

        response = client.post("/api/generate-batch", json={"accountIndex": 7, "contactIds": ["RIV-A", "RIV-D"]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = ndjson(response)
        statuses = [(e["contact_id"], e["status"]) for e in events if e["type"] == "status"]
        assert statuses[-1] == ("RIV-D", "error")
        summary = events[-1]
        assert summary["message"] == "1 succeeded, 1 failed"
        assert list(summary["result"]["sequences"]) == ["RIV-A"]
        assert summary["result"]["validations"]["RIV-A"]["passed"] is True

    def test_auto_selection_when_no_ids(self, client):
        events = ndjson(client.post("/api/generate-batch", json={"accountIndex": 7}))

        pending = [e["contact_id"] for e in events if e.get("status") == "pending"]
        assert pending == ["RIV-A", "RIV-B", "RIV-E"]

    def test_all_eligible(self, client):
        events = ndjson(client.post("/api/generate-batch", json={"accountIndex": 7, "allEligible": True}))

        assert events[-1]["message"] == "4 succeeded, 0 failed"

    def test_bad_account_index(self, client):
        response = client.post("/api/generate-batch", json={"accountIndex": "seven"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid accountIndex"}

    def test_unknown_account(self, client):
        assert client.post("/api/generate-batch", json={"accountIndex": 99}).status_code == 404

    def test_unknown_contact(self, client):
        response = client.post("/api/generate-batch", json={"accountIndex": 7, "contactIds": ["RIV-Z"]})

        assert response.status_code == 400
        assert "RIV-Z" in response.json()["error"]

    def test_invalid_config(self, client):
        response = client.post("/api/generate-batch", json={"accountIndex": 7, "config": {"temperature": 3}})

        assert response.status_code == 400
        assert "temperature" in response.json()["details"]["field_errors"]


class TestValidate:
    def test_validate_sequence(self, client):
        response = client.post("/api/validate", json={"emails": make_sequence()})

        assert response.status_code == 200
        assert response.json()["validation"]["passed"] is True
        assert response.json()["schema"]["valid"] is True

    def test_validate_requires_email_list(self, client):
        response = client.post("/api/validate", json={"emails": "nope"})

        assert response.status_code == 400


class TestSavedEmails:
    def test_crud(self, client, store):
        created = client.post("/api/emails", json=save_body())
        assert created.status_code == 201
        email_id = created.json()["id"]

        listed = client.get("/api/emails").json()
        assert [item["id"] for item in listed] == [email_id]
        assert listed[0]["emailCount"] == 3

        assert client.get("/api/emails", params={"accountIndex": 7}).json()[0]["id"] == email_id
        assert client.get("/api/emails", params={"accountIndex": 12}).json() == []

        assert client.get(f"/api/emails/{email_id}").json()["emails"] == make_sequence()

        deleted = client.delete(f"/api/emails/{email_id}")
        assert deleted.json() == {"success": True, "id": email_id}
        assert store.count() == 0

        missing = client.get(f"/api/emails/{email_id}")
        assert missing.status_code == 404
        assert missing.json() == {"error": "Email not found"}
        assert client.delete(f"/api/emails/{email_id}").status_code == 404

    def test_bad_account_filter(self, client):
        response = client.get("/api/emails", params={"accountIndex": "abc"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid accountIndex parameter"}

    def test_save_validates_sequence(self, client, store):
        response = client.post("/api/emails", json=save_body(emails=make_sequence()[:2]))

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"
        assert "details" in response.json()
        assert store.count() == 0


class TestExport:
    def test_export_payload(self, client):
        response = client.post("/api/export", json={
            "contactName": "Jane Park",
            "contactTitle": "Chief Learning Officer",
            "accountName": "Riverside Health",
            "emails": make_sequence(),
        })

        assert response.status_code == 200
        assert response.headers["content-type"] == DOCX_MEDIA_TYPE
        assert 'filename="jane-park-emails.docx"' in response.headers["content-disposition"]
        assert len(Document(io.BytesIO(response.content)).tables) == 3

    def test_export_saved_sequence(self, client):
        email_id = client.post("/api/emails", json=save_body()).json()["id"]

        response = client.post("/api/export", json={"id": email_id})

        assert response.status_code == 200
        assert Document(io.BytesIO(response.content)).paragraphs[0].text == "Email Sequence for Jane Park"

    def test_export_unknown_saved_sequence(self, client):
        assert client.post("/api/export", json={"id": "missing"}).status_code == 404

    def test_export_requires_name_and_emails(self, client):
        response = client.post("/api/export", json={"contactName": "Jane Park", "emails": []})

        assert response.status_code == 400
        assert response.json() == {"error": "contactName and emails are required"}
