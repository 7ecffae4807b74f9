import pytest

from livecoach.errors import ResponseParseError
from livecoach.schema import MAX_TIPS, extract_json_object, parse_coach_tip


def test_fenced_json_with_prose():
    text = 'Here you go:\n```json\n{"type": "objection", "tips": ["Acknowledge", "Reframe"], "keywords": ["ROI"], "method": "SPIN"}\n```\nGood luck!'
    tip = parse_coach_tip(text, question_text="Why so expensive?", timestamp=12.5)
    assert tip.type == "objection"
    assert tip.tips == ["Acknowledge", "Reframe"]
    assert tip.keywords == ["ROI"]
    assert tip.method == "SPIN"
    assert tip.timestamp == 12.5
    assert tip.question_text == "Why so expensive?"


def test_tips_truncated_to_three():
    tip = parse_coach_tip('{"type": "technical", "tips": ["a", "b", "c", "d", "e"]}')
    assert len(tip.tips) == MAX_TIPS
    assert tip.tips == ["a", "b", "c"]


@pytest.mark.parametrize("method", [None, "", "null", "NULL"])
def test_null_methods_become_none(method):
    import json
    tip = parse_coach_tip(json.dumps({"tips": ["x"], "method": method}))
    assert tip.method is None


def test_braces_inside_strings():
    obj = extract_json_object('Sure! {"tips": ["use {curly} words", "say \\"hi\\""]} trailing }')
    assert obj["tips"] == ["use {curly} words", 'say "hi"']


def test_skips_non_json_braces_before_the_object():
    obj = extract_json_object('note {oops} then {"tips": ["a"]}')
    assert obj == {"tips": ["a"]}


def test_keyword_string_becomes_list_and_type_defaults():
    tip = parse_coach_tip('{"tips": ["x"], "keywords": "pricing"}')
    assert tip.keywords == ["pricing"]
    assert tip.type == "general"


@pytest.mark.parametrize("text", ["", "   ", "no json here", '{"tips": "not a list"}', '{"type": "x"}', "{unbalanced"])
def test_invalid_responses_fail_closed(text):
    with pytest.raises(ResponseParseError):
        parse_coach_tip(text)
