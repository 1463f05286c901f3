import json

import pytest

from abm_email_local.utils.json_extraction import (
    SequenceParseError,
    extract_json_array,
    extract_json_with_strategy,
)

from conftest import make_sequence


def test_plain_json_uses_whole_text():
    text = json.dumps(make_sequence())

    value, strategy = extract_json_with_strategy(text)

    assert strategy == "whole_text"
    assert value == make_sequence()


def test_fenced_block_with_prose():
    text = "Here is the sequence:\n```json\n" + json.dumps(make_sequence()) + "\n```\nLet me know!"

    value, strategy = extract_json_with_strategy(text)

    assert strategy == "code_block"
    assert len(value) == 3


def test_array_of_objects_inside_prose():
    value, strategy = extract_json_with_strategy('Sure: [{"a": 1}, {"b": 2}] Hope this helps.')

    assert strategy == "array_pattern"
    assert value == [{"a": 1}, {"b": 2}]


def test_sequence_after_prose_uses_array_pattern():
    text = "Here are the three emails:\n" + json.dumps(make_sequence()) + "\nThanks"

    value, strategy = extract_json_with_strategy(text)

    assert strategy == "array_pattern"
    assert value == make_sequence()


def test_outermost_bracket_span_is_last_resort():
    value, strategy = extract_json_with_strategy('Result: ["timing", "challenge"] done')

    assert strategy == "bracket_span"
    assert value == ["timing", "challenge"]


def test_nested_brackets_in_a_body_fall_through_to_bracket_span():
    emails = make_sequence()
    emails[1]["body"] = emails[1]["body"].replace("Hi Jane,", "Hi Jane, see note [{1}] below.")
    text = "Here are the three emails:\n" + json.dumps(emails) + "\nThanks"

    value, strategy = extract_json_with_strategy(text)

    assert strategy == "bracket_span"
    assert value == emails
    assert len(value) == 3


def test_all_strategies_fail():
    with pytest.raises(SequenceParseError) as excinfo:
        extract_json_array("I could not write the emails this time.")

    assert str(excinfo.value) == "Failed to parse email sequence from response"
    assert excinfo.value.raw_text == "I could not write the emails this time."


def test_parse_error_is_a_value_error():
    with pytest.raises(ValueError):
        extract_json_array("[not json]")
