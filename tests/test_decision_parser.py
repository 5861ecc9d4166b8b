import json

from riskloop.decision_parser import DecisionParser, clean_response


def test_fenced_json_block():
    raw = 'Analysis done.\n```json\n{"action": "LONG", "confidence": 0.8, "reasoning": "trend"}\n```\nGood luck.'
    result = DecisionParser().extract(raw)
    assert result.ok
    assert result.strategy == "fenced"
    assert result.payload["action"] == "LONG"
    assert result.payload["confidence"] == 0.8
    assert result.payload["reasoning"] == "trend"


def test_brace_match_skips_braces_inside_strings():
    raw = 'My answer is {"action": "SHORT", "confidence": 0.7, "reasoning": "weak {bounce}"} as requested.'
    result = DecisionParser().extract(raw)
    assert result.ok
    assert result.strategy == "brace"
    assert result.payload["action"] == "SHORT"
    assert result.payload["reasoning"] == "weak {bounce}"


def test_whole_response_as_json():
    raw = json.dumps({"action": "HOLD", "confidence": 0.3})
    result = DecisionParser().extract(raw)
    assert result.ok
    # The brace strategy sees the same object first
    assert result.strategy in ("brace", "whole")
    assert result.payload["action"] == "HOLD"


def test_action_aliases_are_normalized():
    parser = DecisionParser()
    assert parser.extract('{"action": "buy", "confidence": 0.9}').payload["action"] == "LONG"
    assert parser.extract('{"action": "SELL", "confidence": 0.9}').payload["action"] == "SHORT"
    assert parser.extract('{"action": "close_long", "confidence": 0.9}').payload["action"] == "CLOSE"


def test_think_block_is_removed_before_extraction():
    raw = '<think>Maybe {"action": "LONG"} ... no.</think>\n{"action": "SHORT", "confidence": 0.66}'
    assert clean_response(raw).startswith("{")
    result = DecisionParser().extract(raw)
    assert result.ok
    assert result.payload["action"] == "SHORT"


def test_take_profit_accepts_number_or_list():
    parser = DecisionParser()
    single = parser.extract('{"action": "LONG", "confidence": 0.7, "take_profit": 105}')
    ladder = parser.extract('{"action": "LONG", "confidence": 0.7, "take_profit": [105, 110.5]}')
    assert single.payload["take_profit_levels"] == [105.0]
    assert ladder.payload["take_profit_levels"] == [105.0, 110.5]


def test_prose_without_json_fails_every_strategy():
    result = DecisionParser().extract("The market looks bullish but I would wait for confirmation.")
    assert not result.ok
    assert result.payload is None
    assert len(result.errors) == 3


def test_invalid_fields_are_rejected():
    parser = DecisionParser()
    assert not parser.extract('{"action": "MOON", "confidence": 0.9}').ok
    assert not parser.extract('{"action": "LONG", "confidence": 1.5}').ok
    assert not parser.extract('{"action": "LONG", "confidence": "high"}').ok
    assert not parser.extract('{"action": "LONG", "confidence": true}').ok
    assert not parser.extract('{"action": "LONG", "confidence": 0.7, "leverage": "5x"}').ok


def test_empty_and_non_object_responses():
    parser = DecisionParser()
    assert parser.extract("").errors == ["empty response"]
    assert not parser.extract("[1, 2, 3]").ok
    assert not parser.extract(None).ok
