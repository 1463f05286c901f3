import pytest

from abm_email_local.utils.validators import InputValidator


@pytest.fixture
def validator():
    return InputValidator()


@pytest.mark.parametrize("value,expected", [
    (7, 7),
    ("12", 12),
    (" 3 ", 3),
    ("0", None),
    (-1, None),
    ("abc", None),
    (None, None),
    (True, None),
])
def test_validate_account_index(validator, value, expected):
    assert validator.validate_account_index(value) == expected


def test_validate_contact_id(validator):
    assert validator.validate_contact_id("RIV-A")
    assert validator.validate_contact_id("c_001.x")
    assert not validator.validate_contact_id("")
    assert not validator.validate_contact_id("bad id")


def test_validate_api_key(validator):
    assert validator.validate_api_key("sk-proj-abc123")
    assert not validator.validate_api_key("pk-abc123")


def test_validate_config_accepts_dry_run_without_key(validator, tmp_path):
    assert validator.validate_config({"dry_run": True, "data_dir": str(tmp_path)}) == []


def test_validate_config_collects_every_problem(validator, tmp_path):
    errors = validator.validate_config({
        "openai_api_key": "not-a-key",
        "temperature": 1.5,
        "min_words": 240,
        "max_words": 180,
        "max_output_tokens": 0,
        "storage_backend": "redis",
        "data_dir": str(tmp_path),
    })

    assert "Invalid OpenAI API key format" in errors
    assert "Temperature must be a number between 0.0 and 1.0" in errors
    assert "min_words cannot exceed max_words" in errors
    assert "max_output_tokens must be a positive integer" in errors
    assert any(e.startswith("Unknown storage backend 'redis'") for e in errors)


def test_validate_data_dir_creates_directory(validator, tmp_path):
    target = tmp_path / "nested" / "data"

    assert validator.validate_data_dir(str(target)) == []
    assert target.is_dir()


def test_validate_data_dir_requires_a_value(validator):
    assert validator.validate_data_dir("") == ["Data directory is not configured"]
