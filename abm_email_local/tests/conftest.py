from pathlib import Path
from types import SimpleNamespace
import json
import sys

import httpx
import openai
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from abm_email_local.api import build_config
from abm_email_local.utils.llm_client import LLMClient


SIGNER = "Dalton"
FILLER = (
    "clinical teams across the network are preparing for the next wave "
    "of training and education work"
).split()
WARMTH = "Even if the timing isn't right, I hope these findings are useful."
ANGLES = ["timing", "challenge", "outcome"]
SUBJECTS = [
    "Epic go-live training plan",
    "Training time away from patients",
    "Engagement in virtual EHR training",
]


def make_body(word_count=170, greeting="Hi Jane,", extra=""):
    """Body that passes every rulebook check with exactly ``word_count`` words."""
    head = greeting.split()
    tail = extra.split() + [SIGNER]
    filler = [FILLER[i % len(FILLER)] for i in range(word_count - len(head) - len(tail))]
    middle = " ".join(filler + extra.split())
    return f"{greeting}\n\n{middle}\n\n{SIGNER}"


def make_email(number, word_count=170, **overrides):
    email = {
        "variant_id": f"007-A-E{number}",
        "email_number": number,
        "subject_line": SUBJECTS[number - 1],
        "body": make_body(word_count, extra=WARMTH if number == 3 else ""),
        "word_count": word_count,
        "angle": ANGLES[number - 1],
    }
    email.update(overrides)
    return email


def make_sequence():
    return [make_email(1), make_email(2), make_email(3)]


ACCOUNTS = [
    {
        "index": 7,
        "company_name": "Riverside Health",
        "tier": "Tier 1",
        "ehr_system": "Epic",
        "employee_count": 12000,
        "timing_signals": "Epic go-live planned for Q3",
        "ehr_go_live_date": "2026-09",
        "key_timing_signals": "Epic migration underway",
        "structured_timing": None,
        "qualification_summary": "Large nursing workforce across four hospitals",
        "evidence_summary": "",
        "news_summary": "",
    },
    {
        "index": 12,
        "company_name": "Lakeside Medical",
        "tier": "Tier 2",
        "ehr_system": "Oracle Health",
        "employee_count": 3400,
    },
]

# Stored out of priority order on purpose
CONTACTS = [
    {
        "contact_id": "RIV-E",
        "full_name": "Erin Walsh",
        "first_name": "Erin",
        "title": "Director of Clinical Education",
        "email": "erin.walsh@riverside.example",
        "persona_match": "Clinical Education",
        "outreach_priority": 5,
    },
    {
        "contact_id": "RIV-A",
        "full_name": "Jane Park",
        "first_name": "Jane",
        "title": "Chief Learning Officer",
        "email": "jane.park@riverside.example",
        "persona_match": "L&D Leader",
        "department": "Learning",
        "outreach_priority": 3,
    },
    {
        "contact_id": "RIV-B",
        "full_name": "Ben Ortiz",
        "title": "Chief Information Officer",
        "email": "ben.ortiz@riverside.example",
        "persona_match": "IT Leader",
        "outreach_priority": 1,
    },
    {
        "contact_id": "RIV-C",
        "full_name": "Carol Diaz",
        "first_name": "Carol",
        "title": "Chief Executive Officer",
        "email": "carol.diaz@riverside.example",
        "persona_match": "Executive",
        "outreach_priority": 2,
    },
    {
        "contact_id": "RIV-D",
        "full_name": "Dan Moore",
        "first_name": "Dan",
        "title": "Nurse Manager",
        "email": "",
        "persona_match": "Clinical Leader",
        "outreach_priority": 4,
    },
]


def _write_json(path, payload):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


@pytest.fixture
def data_dir(tmp_path):
    """Working directory with campaign data for accounts 7 and 12 (12 has no contacts)."""
    root = tmp_path / "abm-data"
    campaign = root / "campaign-data"
    _write_json(campaign / "accounts" / "accounts.json", {"accounts": ACCOUNTS})
    _write_json(campaign / "contacts" / "account-007.json", {"contacts": CONTACTS})
    _write_json(campaign / "config" / "senders.json", {"senders": [{"first_name": SIGNER}]})
    return root


@pytest.fixture
def campaign_dir(data_dir):
    return data_dir / "campaign-data"


@pytest.fixture
def config(data_dir):
    return build_config({
        "openai_api_key": "sk-test-123456",
        "data_dir": str(data_dir),
        "storage_backend": "memory",
    })


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


def _stream_chunks(text, size=40):
    for start in range(0, len(text), size):
        delta = SimpleNamespace(content=text[start:start + size])
        yield SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


class BrokenStream:
    """Streamed reply that sends ``text`` and then fails with ``error``."""

    def __init__(self, text, error):
        self.text = text
        self.error = error

    def chunks(self):
        yield from _stream_chunks(self.text)
        raise self.error


class FakeCompletions:
    """Stands in for ``client.chat.completions``; replies are consumed in order."""

    def __init__(self):
        self.replies = []
        self.calls = []

    def create(self, **params):
        self.calls.append(params)
        reply = self.replies.pop(0) if self.replies else json.dumps(make_sequence())
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, BrokenStream):
            return reply.chunks()
        if params.get("stream"):
            return _stream_chunks(reply)
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=None)


class FakeOpenAI:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)

    def queue(self, *replies):
        self.completions.replies.extend(replies)

    @property
    def calls(self):
        return self.completions.calls


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def llm_client(fake_openai):
    return LLMClient(api_key="sk-test-123456", client=fake_openai)
